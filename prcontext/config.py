from pathlib import Path
from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)

    # Extraction Configuration
    supported_extensions: str = Field(default=".py,.js,.jsx,.ts,.tsx")
    resolution_extensions: str = Field(default=".ts,.js,.tsx,.jsx,.py")
    extraction_workers: int = Field(default=4)
    max_file_size: int = Field(default=1_000_000)

    # Retrieval Configuration
    rrf_k: int = Field(default=60)
    vector_top_k: int = Field(default=10)
    keyword_top_k: int = Field(default=10)
    bm25_k1: float = Field(default=1.2)
    bm25_b: float = Field(default=0.75)

    # Token Budget Configuration
    max_context_tokens: int = Field(default=12000)
    max_diff_tokens: int = Field(default=4000)
    max_total_input_tokens: int = Field(default=16000)
    max_output_tokens: int = Field(default=2000)
    preamble_tokens: int = Field(default=500)
    chars_per_token: int = Field(default=4)

    # PR Size Limits
    pr_max_files: int = Field(default=50)
    pr_max_additions: int = Field(default=2000)
    pr_max_deletions: int = Field(default=1500)
    pr_max_total_changes: int = Field(default=3000)

    # Vector Store Configuration
    vector_store: str = Field(default="memory")
    vector_query_timeout: float = Field(default=10.0)
    milvus_host: str = Field(default="localhost")
    milvus_port: int = Field(default=19530)
    milvus_collection_name: str = Field(default="pr_reviews")

    # Embedding Service Configuration
    embedding_provider: str = Field(default="hash")
    hash_embedding_dimension: int = Field(default=256)
    openai_api_key: Optional[str] = Field(default=None)
    openai_model: str = Field(default="text-embedding-3-small")
    openai_dimension: int = Field(default=1536)
    ollama_host: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="nomic-embed-text")
    ollama_dimension: int = Field(default=768)

    # Persisted artefacts (call graph, keyword documents, in-memory vectors)
    data_dir: str = Field(default=".prcontext")

    @property
    def supported_extensions_list(self) -> List[str]:
        """Get supported extensions as a list."""
        return [ext.strip() for ext in self.supported_extensions.split(",") if ext.strip()]

    @property
    def resolution_extensions_list(self) -> List[str]:
        """Extensions tried, in order, when resolving a relative import."""
        return [ext.strip() for ext in self.resolution_extensions.split(",") if ext.strip()]

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    def ensure_directories(self):
        """Ensure necessary directories exist."""
        self.data_path.mkdir(parents=True, exist_ok=True)
        if self.log_file:
            Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)


settings = Settings()
