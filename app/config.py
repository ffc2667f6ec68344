import os
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables from .env file with explicit path
load_dotenv(dotenv_path=Path(__file__).parent.parent / '.env')

# OpenAI Configuration
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-3.5-turbo")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-ada-002")

# Embedding batching
# The embeddings endpoint accepts at most 2048 inputs per request
EMBEDDING_MAX_BATCH_SIZE = int(os.getenv("EMBEDDING_MAX_BATCH_SIZE", "2000"))

# Retrieval Configuration
RETRIEVAL_TOP_N = int(os.getenv("RETRIEVAL_TOP_N", "300"))

# Delay between context-shrinking chat attempts
SHRINK_DELAY_SECONDS = float(os.getenv("SHRINK_DELAY_SECONDS", "0.5"))

# Document repository (local filesystem implementation)
DOCUMENT_ROOT = os.getenv("DOCUMENT_ROOT", "data/documents")

# Durable vector storage (ChromaDB)
VECTOR_STORE_ENABLED = os.getenv("VECTOR_STORE_ENABLED", "true").lower() == "true"
VECTOR_STORE_DIR = os.getenv(
    "VECTOR_STORE_DIR",
    str(Path(__file__).parent / "rag" / "chroma_db"),
)

# Conversation persistence
CONVERSATION_DB_PATH = os.getenv("CONVERSATION_DB_PATH", "app/conversations.db")
