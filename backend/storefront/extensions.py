# Overview: Flask extension instances for database, migrations and uploaded media.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .storage import LocalBlobStore

db = SQLAlchemy()
migrate = Migrate()
blobs = LocalBlobStore()
