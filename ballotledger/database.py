import motor.motor_asyncio

from . import config


def get_content_collection(uri: str = config.MONGO_URI, db_name: str = config.MONGO_DB):
    client = motor.motor_asyncio.AsyncIOMotorClient(uri, serverSelectionTimeoutMS=5000)
    db = client[db_name]
    return db.get_collection(config.CONTENT_COLLECTION)
