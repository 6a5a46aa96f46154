"""
Scheduled Tasks Module
Background jobs: marks devices that stopped sending heartbeats as offline
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
import logging

logger = logging.getLogger(__name__)
scheduler = None


def offline_sweep_task(app):
    """
    Scheduled task to move silent devices into offline mode
    Runs every OFFLINE_SWEEP_INTERVAL_SECONDS
    """
    with app.app_context():
        from models import db
        from utils.cache_coordinator import sweep_offline_devices

        try:
            count = sweep_offline_devices()
            logger.debug(f"Offline sweep completed: {count} device(s) marked offline")

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error in offline sweep task: {e}")


def init_scheduler(app):
    """
    Initialize and start the background scheduler

    Args:
        app: Flask application instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return

    if not app.config.get('OFFLINE_SWEEP_ENABLED'):
        logger.info("Offline sweep disabled, scheduler not started")
        return

    try:
        scheduler = BackgroundScheduler()

        interval = app.config.get('OFFLINE_SWEEP_INTERVAL_SECONDS', 60)
        scheduler.add_job(
            func=offline_sweep_task,
            trigger=IntervalTrigger(seconds=interval),
            args=[app],
            id='offline_sweep',
            name='Device offline sweep',
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        logger.info(f"Offline sweep started - Every {interval} seconds")

        scheduler.start()
        logger.info("Scheduler started successfully")

    except Exception as e:
        scheduler = None
        logger.error(f"Failed to initialize scheduler: {e}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully"""
    global scheduler

    if scheduler is not None:
        try:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")
        except Exception as e:
            logger.error(f"Error shutting down scheduler: {e}")
        scheduler = None
