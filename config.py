import os
import certifi
import dotenv

dotenv.load_dotenv()


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value not in (None, '') else default


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess-secret-key-12345'

    # TiDB / MySQL Connection URI
    # Automatically handled by app.py patch for pymysql
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # SSL Configuration for TiDB Cloud
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_recycle": 300,
        "pool_pre_ping": True,
        "connect_args": {
            "ssl": {
                "ca": certifi.where(),
            }
        }
    }

    # Billing
    INVOICE_PREFIX = os.environ.get('INVOICE_PREFIX', 'BILL')
    DEFAULT_SGST_PERCENT = _env_float('DEFAULT_SGST_PERCENT', 14.0)
    DEFAULT_CGST_PERCENT = _env_float('DEFAULT_CGST_PERCENT', 14.0)
    DEFAULT_CESS_PERCENT = _env_float('DEFAULT_CESS_PERCENT', 12.0)

    # Seller record created on first start
    DEFAULT_COMPANY_NAME = os.environ.get('COMPANY_NAME', 'YOUR COMPANY NAME')
    DEFAULT_COMPANY_EMAIL = os.environ.get('COMPANY_EMAIL', 'contact@yourcompany.com')
