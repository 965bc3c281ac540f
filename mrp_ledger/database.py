"""Database configuration and initialization."""
from sqlalchemy import create_engine, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')

# Global session and engine
engine = None
db_session = None


def _engine_options(database_uri: str) -> dict:
    """Pool options per backend (SQLite is only used for tests and local runs)."""
    if database_uri.startswith('sqlite'):
        return {
            'connect_args': {'check_same_thread': False},
            'poolclass': StaticPool,
        }
    return {
        'pool_pre_ping': True,  # Enable connection health checks
        'pool_size': 10,
        'max_overflow': 20,
    }


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine = create_engine(
        database_uri,
        echo=app.config.get('SQLALCHEMY_ECHO', False),
        **_engine_options(database_uri)
    )

    db_session = scoped_session(
        sessionmaker(autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_tables():
    """Create every table known to the models package."""
    import mrp_ledger.models  # noqa: F401  (registers mappers on Base)
    Base.metadata.create_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


def get_engine():
    """Get the engine bound by init_db."""
    return engine
