from dotenv import load_dotenv
load_dotenv()

from flask import Flask
import pymysql
pymysql.install_as_MySQLdb()
import logging
from config import Config
from models import db, Company
from repository import SQLAlchemyRepository
from routes import main_bp

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    db.init_app(app)
    app.extensions['billing_repository'] = SQLAlchemyRepository(
        invoice_prefix=app.config['INVOICE_PREFIX']
    )

    # Register Blueprint
    app.register_blueprint(main_bp)

    with app.app_context():
        try:
            # Create database tables for our data models
            db.create_all()

            # Ensure at least one company record exists
            if not Company.query.first():
                default_company = Company(
                    name=app.config['DEFAULT_COMPANY_NAME'],
                    email=app.config['DEFAULT_COMPANY_EMAIL'],
                )
                db.session.add(default_company)
                db.session.commit()
                logger.info("Default company created.")
        except Exception as e:
            logger.error(f"Error initializing database: {e}")
            db.session.rollback()

    return app


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True, host="0.0.0.0")
