"""
Database Initialization Script
Run this script to create all database tables and seed demo content
"""
import os
import sys
from datetime import time
from app import create_app
from models import (db, Tenant, ScreenGroup, Device, MediaAsset, Playlist, PlaylistItem,
                    Layout, LayoutZone, Scene, SceneSlide, Schedule, ScheduleEntry)


def seed_demo_content():
    """Create one tenant with a screen, a layout scene and a weekday schedule"""
    tenant = Tenant(name='Demo Cafe')
    db.session.add(tenant)
    db.session.flush()

    logo = MediaAsset(tenant_id=tenant.id, name='Logo', media_type='image',
                      url='https://cdn.example.com/demo/logo.png')
    promo = MediaAsset(tenant_id=tenant.id, name='Promo', media_type='video',
                       url='https://cdn.example.com/demo/promo.mp4', duration=30)
    db.session.add_all([logo, promo])
    db.session.flush()

    morning = Playlist(tenant_id=tenant.id, name='Morning Menu', default_duration=12)
    db.session.add(morning)
    db.session.flush()
    db.session.add_all([
        PlaylistItem(playlist_id=morning.id, media_id=promo.id, position=0),
        PlaylistItem(playlist_id=morning.id, media_id=logo.id, position=1, duration=5),
    ])

    layout = Layout(tenant_id=tenant.id, name='Split Screen')
    db.session.add(layout)
    db.session.flush()
    db.session.add_all([
        LayoutZone(layout_id=layout.id, zone_name='main', width_percent=75, z_index=0,
                   content_type='playlist', content_id=morning.id),
        LayoutZone(layout_id=layout.id, zone_name='sidebar', x_percent=75, width_percent=25, z_index=1,
                   content_type='media', content_id=logo.id),
    ])

    scene = Scene(tenant_id=tenant.id, name='Breakfast', business_type='restaurant', layout_id=layout.id)
    db.session.add(scene)
    db.session.flush()
    db.session.add(SceneSlide(scene_id=scene.id, position=0, title='Welcome',
                              design_json={'background': {'imageUrl': logo.url}, 'text': 'Good morning'}))

    schedule = Schedule(tenant_id=tenant.id, name='Weekdays')
    db.session.add(schedule)
    db.session.flush()
    db.session.add(ScheduleEntry(schedule_id=schedule.id, target_type='scene', target_id=scene.id,
                                 days_of_week='1,2,3,4,5', start_time=time(7, 0), end_time=time(11, 0),
                                 priority=5))

    group = ScreenGroup(tenant_id=tenant.id, name='Front of House')
    db.session.add(group)
    db.session.flush()

    device = Device(tenant_id=tenant.id, name='Counter Screen', pairing_code='DEMO01',
                    group_id=group.id, assigned_schedule_id=schedule.id,
                    assigned_playlist_id=morning.id, timezone='Europe/London')
    db.session.add(device)
    return device


def init_database():
    """Initialize database with tables and seed data"""

    app = create_app()

    with app.app_context():
        # Drop all tables (use with caution in production!)
        print("Dropping existing tables...")
        db.drop_all()

        # Create all tables
        print("Creating database tables...")
        db.create_all()

        # Create sample data for development (optional)
        device = None
        if os.getenv('FLASK_ENV', 'development') == 'development':
            print("Adding demo content for development...")
            device = seed_demo_content()

        # Commit all changes
        db.session.commit()

        print("\n" + "="*50)
        print("Database initialized successfully!")
        print("="*50)
        if device is not None:
            print(f"\nDemo screen: id={device.id} pairing code={device.pairing_code}")
            print(f"  GET /api/player/{device.id}/content")
        print("="*50 + "\n")


if __name__ == '__main__':
    confirm = input("This will delete all existing data. Continue? (yes/no): ")
    if confirm.lower() == 'yes':
        init_database()
    else:
        print("Database initialization cancelled.")
        sys.exit(0)
