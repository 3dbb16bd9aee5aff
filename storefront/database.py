"""Database configuration and initialization."""
from sqlalchemy import create_engine, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base

# Create SQLAlchemy base
Base = declarative_base()

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')

# Global session and engine
engine = None
db_session = scoped_session(sessionmaker(autocommit=False, autoflush=False))


def init_db(app):
    """Initialize database connection."""
    global engine

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine_options = {
        'echo': app.config.get('SQLALCHEMY_ECHO', False),
        'pool_pre_ping': True,  # Enable connection health checks
    }
    if database_uri.startswith('sqlite'):
        # Worker threads share the file database
        engine_options['connect_args'] = {'check_same_thread': False}
    else:
        engine_options['pool_size'] = 10
        engine_options['max_overflow'] = 20

    engine = create_engine(database_uri, **engine_options)

    db_session.remove()
    db_session.configure(bind=engine)

    Base.query = db_session.query_property()

    if app.config.get('DB_CREATE_ALL'):
        create_tables()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_tables():
    """Create every table known to the models package."""
    import storefront.models  # noqa: F401  registers the mappers
    Base.metadata.create_all(bind=engine)


def drop_tables():
    """Drop every table known to the models package."""
    import storefront.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


# Alias for easier imports
db = db_session
