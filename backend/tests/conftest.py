import os, sys, pytest
# Ensure the backend directory is on path so 'permitdesk' and 'tests' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from permitdesk import create_app, get_db
from permitdesk.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import permitdesk.models.audit  # noqa: F401
import permitdesk.models.permit  # noqa: F401
import permitdesk.models.visitor  # noqa: F401
import permitdesk.models.meter  # noqa: F401
from permitdesk.services.seeding import seed


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app({'TESTING': True, 'DATABASE_URL': os.environ['DATABASE_URL'], 'LOG_LEVEL': 'WARNING'})
    # After app and blueprints are registered, ensure all tables exist and roles are seeded
    with app.app_context():
        session = get_db()
        Base.metadata.create_all(session.get_bind())
        seed(session)
        session.commit()
    yield app


@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance


@pytest.fixture()
def client(app_context):
    return app_context.test_client()


@pytest.fixture()
def session(app_context):
    s = get_db()
    s.expire_all()
    return s
