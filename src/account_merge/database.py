"""
Database initialization for the account merge service.

This module provides:
- Database URI resolution and engine setup
- The `atomic` transaction helper used by every mutating service call
- Settings table writer (admin tooling and tests)
- Demo seeding for local previews
"""
import logging
import os
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import event

from .config_defaults import get_bool_config, get_config
from .models import Account, MediaFile, Settings, TravelEntry, db

logger = logging.getLogger(__name__)


def get_db_path() -> str:
    """
    Get SQLite database file path.
    Priority: environment variable > .env.defaults > current directory
    """
    db_path = get_config('ACCOUNT_MERGE_DB_PATH')
    if db_path:
        logger.info(f"Using database path from environment: {db_path}")
        return db_path

    db_path = os.path.join(os.getcwd(), 'account_merge.db')
    logger.info(f"Using default database path: {db_path}")
    return db_path


def get_database_uri() -> str:
    """Full database URL wins over the SQLite file path."""
    url = get_config('ACCOUNT_MERGE_DATABASE_URL')
    if url:
        return url
    return f'sqlite:///{get_db_path()}'


def use_immediate_transactions(engine):
    """
    Make every SQLite transaction start with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so eligibility reads would
    run without any lock and two writers could both pass the same check.
    BEGIN IMMEDIATE takes the database write lock up front; a concurrent
    transaction waits (busy timeout) until the first one commits.
    """
    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')

    logger.debug("SQLite transactions begin IMMEDIATE")


def init_db(app):
    """
    Initialize database with Flask app.

    Creates all tables and optionally seeds demo accounts.
    """
    app.config.setdefault('SQLALCHEMY_DATABASE_URI', get_database_uri())
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', {
        'pool_size': 10,
        'pool_recycle': 3600,
        'pool_pre_ping': True,
    })

    db.init_app(app)

    with app.app_context():
        if db.engine.dialect.name == 'sqlite':
            use_immediate_transactions(db.engine)

        db.create_all()
        logger.info("Database tables created/verified")

        if get_bool_config('SEED_DEMO_ACCOUNTS'):
            seed_demo_accounts()


@contextmanager
def atomic(session):
    """
    Run a block as one transaction.

    Commits when the block finishes, rolls back and re-raises on any
    exception. Services call this once per operation; nested helpers only
    add and flush.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def set_setting(key: str, value: Any, session=None):
    """Set setting value and commit."""
    session = session or db.session
    setting = session.query(Settings).filter_by(key=key).first()
    if not setting:
        setting = Settings(key=key)
        session.add(setting)
    setting.set_value(value)
    session.commit()
    logger.info(f"Setting {key} updated")


# ============================================================================
# Demo data
# ============================================================================

DEMO_ACCOUNTS = (
    {
        'username': 'anna',
        'first_name': 'Anna',
        'last_name': 'Berg',
        'public_username': 'anna-travels',
        'profile_bio': 'Slow traveller, mostly by train.',
        'hero_image_filename': 'anna-hero.jpg',
        'entries': (('Lisbon at dawn', 'Lisbon'), ('Night train to Vienna', 'Vienna')),
    },
    {
        'username': 'ben',
        'first_name': 'Ben',
        'last_name': 'Carter',
        'public_username': None,
        'profile_bio': 'Mountains and maps.',
        'hero_image_filename': None,
        'entries': (('Dolomites loop', 'Cortina'),),
    },
)


def seed_demo_accounts() -> list[Account]:
    """
    Seed two demo accounts with public entries.

    Existing demo accounts are left untouched. Returns the demo accounts.
    """
    password = get_config('DEMO_ACCOUNT_PASSWORD', 'DemoPassword123!')
    accounts = []
    for demo in DEMO_ACCOUNTS:
        existing = Account.query.filter_by(username=demo['username']).first()
        if existing:
            logger.debug(f"Demo account '{demo['username']}' already exists")
            accounts.append(existing)
            continue

        account = Account(
            username=demo['username'],
            email=f"{demo['username']}@example.com",
            first_name=demo['first_name'],
            last_name=demo['last_name'],
            public_username=demo['public_username'],
            profile_bio=demo['profile_bio'],
            hero_image_filename=demo['hero_image_filename'],
            profile_public=1,
            is_active=1,
        )
        account.set_password(password)
        db.session.add(account)
        db.session.flush()

        for offset, (title, location) in enumerate(demo['entries']):
            entry = TravelEntry(
                account_id=account.id,
                title=title,
                location_name=location,
                entry_date=date.today() - timedelta(days=30 * (offset + 1)),
                is_public=1,
                created_at=datetime.utcnow() - timedelta(days=offset),
            )
            db.session.add(entry)
            db.session.flush()
            db.session.add(MediaFile(entry_id=entry.id, file_name=f'{account.username}-{offset}.jpg', file_type='image'))

        accounts.append(account)
        logger.info(f"Demo account created: {account.username}")

    db.session.commit()
    return accounts
