import os

from errors import ConfigurationError


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


def _default_database_uri():
    db_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'instance', 'skillnest.db')
    os.makedirs(os.path.dirname(db_path), exist_ok=True)
    return f'sqlite:///{db_path}'


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'skillnest-dev-key')
    PERMANENT_SESSION_LIFETIME = 3600  # 1 hour
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL') or _default_database_uri()
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Chain
    RPC_URL = os.getenv('RPC_URL')
    WALLET_PRIVATE_KEY = os.getenv('WALLET_PRIVATE_KEY')
    CONTRACT_ADDRESS = os.getenv('CONTRACT_ADDRESS')
    CHAIN_ID = os.getenv('CHAIN_ID')
    MINT_RECEIPT_TIMEOUT = int(os.getenv('MINT_RECEIPT_TIMEOUT', '120'))
    MINT_MAX_WORKERS = int(os.getenv('MINT_MAX_WORKERS', '4'))

    # IPFS (Filebase RPC)
    FILEBASE_IPFS_KEY = os.getenv('FILEBASE_IPFS_KEY')
    IPFS_API_URL = os.getenv('IPFS_API_URL', 'https://rpc.filebase.io/api/v0/add')
    IPFS_UPLOAD_TIMEOUT = int(os.getenv('IPFS_UPLOAD_TIMEOUT', '30'))
    NFT_IMAGE_BASE_URL = os.getenv('NFT_IMAGE_BASE_URL', '')
    PROOF_METADATA_WRAPPED = _env_bool('PROOF_METADATA_WRAPPED', True)

    # Callable(config) -> PipelineContext; None means PipelineContext.from_config
    PROOF_CONTEXT_FACTORY = None


CHAIN_SETTINGS = ('RPC_URL', 'WALLET_PRIVATE_KEY', 'CONTRACT_ADDRESS')
STORAGE_SETTINGS = ('FILEBASE_IPFS_KEY',)


def require_settings(config, names):
    """Return the requested settings, failing if any is unset.

    Checked per request rather than at startup so the rest of the app keeps
    working without chain credentials.
    """
    missing = [name for name in names if not config.get(name)]
    if missing:
        raise ConfigurationError(missing)
    return {name: config[name] for name in names}


def chain_id(config):
    """CHAIN_ID as an int, or None when unset."""
    value = config.get('CHAIN_ID')
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(['CHAIN_ID'])
