from decimal import Decimal

from bson.codec_options import CodecOptions, TypeCodec, TypeRegistry
from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from config import MONGO_CONNECTION_STRING, DATABASE_NAME, UPLOAD_DIR, UPLOAD_URL_PREFIX
from database.blob_store import LocalBlobStore
from database.operations import (
    EntityStore,
    USERS,
    CLIENTS,
    PROJECTS,
    ESTIMATIONS,
    QUOTATIONS,
    COMMENTS,
)
from logging_config import logger


class DecimalCodec(TypeCodec):
    """Store money as Decimal128 and read it back as Decimal."""
    python_type = Decimal
    bson_type = Decimal128

    def transform_python(self, value):
        return Decimal128(value)

    def transform_bson(self, value):
        return value.to_decimal()


CODEC_OPTIONS = CodecOptions(type_registry=TypeRegistry([DecimalCodec()]))

# Async client for API operations
async_client = AsyncIOMotorClient(MONGO_CONNECTION_STRING)
async_db = async_client.get_database(DATABASE_NAME, codec_options=CODEC_OPTIONS)

entity_store = EntityStore(async_db)
blob_store = LocalBlobStore(UPLOAD_DIR, UPLOAD_URL_PREFIX)

# Create indexes for better performance and to back uniqueness rules
async def create_indexes():
    # User indexes
    await async_db[USERS].create_index("email", unique=True)
    await async_db[USERS].create_index("role")

    # Client indexes
    await async_db[CLIENTS].create_index("client_name")
    await async_db[CLIENTS].create_index("trn_number", unique=True)
    await async_db[CLIENTS].create_index(
        "vat_number",
        unique=True,
        partialFilterExpression={"vat_number": {"$type": "string"}},
    )

    # Project indexes
    await async_db[PROJECTS].create_index("client_id")
    await async_db[PROJECTS].create_index("status")
    await async_db[PROJECTS].create_index([("created_at", -1)])

    # Estimation indexes
    await async_db[ESTIMATIONS].create_index("estimation_number", unique=True)
    await async_db[ESTIMATIONS].create_index("project_id")
    await async_db[ESTIMATIONS].create_index("is_approved")

    # Quotation indexes (one quotation per project)
    await async_db[QUOTATIONS].create_index("quotation_number", unique=True)
    await async_db[QUOTATIONS].create_index("project_id", unique=True)

    # Comment indexes
    await async_db[COMMENTS].create_index([("project_id", 1), ("created_at", -1)])

# Initialize database
async def init_db():
    try:
        await create_indexes()
        logger.info("Database initialized successfully")
    except PyMongoError as e:
        logger.error(f"Error initializing database: {e}")

def close_db():
    async_client.close()

# FastAPI dependencies, overridden in tests
def get_store() -> EntityStore:
    return entity_store

def get_blob_store() -> LocalBlobStore:
    return blob_store
