"""
Configuration management for the semantic analytics layer.
Handles environment-specific settings and resource allocation.
"""

import os
import json
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
import psutil


@dataclass
class DatabaseConfig:
    """Embedded query engine settings."""
    db_path: str = "semantic.duckdb"
    memory_limit: str = "2GB"
    threads: int = 4
    max_result_rows: int = 500000


@dataclass
class ModelConfig:
    """Local language model settings."""
    model_path: str = "models/qwen2.5-coder-3b-instruct-q4_k_m.gguf"
    n_ctx: int = 4096
    n_threads: int = 6
    n_gpu_layers: int = 20
    temperature: float = 0.0
    max_tokens: int = 300
    verbose: bool = False
    correction_attempts: int = 0
    tier_model_paths: Dict[str, str] = field(default_factory=lambda: {
        "3b": "models/qwen2.5-coder-3b-instruct-q4_k_m.gguf",
        "7b": "models/qwen2.5-coder-7b-instruct-q4_k_m.gguf",
    })


@dataclass
class CacheConfig:
    """Table metadata cache settings."""
    cache_dir: str = "cache"
    metadata_file: str = "table_profiles.json"
    metadata_limit: int = 5
    top_values_max_distinct: int = 20
    top_values_limit: int = 10

    @property
    def metadata_path(self) -> str:
        return os.path.join(self.cache_dir, self.metadata_file)


@dataclass
class PersistenceConfig:
    """Pinned query storage settings."""
    transient_limit: int = 10
    durable_path: str = "cache/pinned_queries.json"


@dataclass
class SemanticConfig:
    """Semantic layer document location."""
    layer_path: str = os.path.join(os.path.dirname(os.path.abspath(__file__)),
                                   "semantic", "models", "semantic_layer.json")


@dataclass
class LoggingConfig:
    """Logging configuration settings."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: str = "logs/semantic.log"
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    enable_performance_logging: bool = True


@dataclass
class FlagConfig:
    """Default values served by the entitlement oracle."""
    defaults: Dict[str, Any] = field(default_factory=lambda: {
        "query-persistence": False,
        "data-limit": 500000,
        "smarter-model-tier": "3b",
    })


class Config:
    """Main configuration class that manages all settings."""

    def __init__(self, config_file: Optional[str] = None, auto_configure: bool = True):
        self.database = DatabaseConfig()
        self.model = ModelConfig()
        self.cache = CacheConfig()
        self.persistence = PersistenceConfig()
        self.semantic = SemanticConfig()
        self.logging = LoggingConfig()
        self.flags = FlagConfig()

        # Auto-detect system resources and adjust settings
        if auto_configure:
            self._auto_configure_resources()

        # Load from config file if provided
        if config_file and os.path.exists(config_file):
            self.load_from_file(config_file)

        # Override with environment variables
        self._load_from_env()

    def _auto_configure_resources(self):
        """Auto-configure settings based on available system resources."""
        memory_gb = psutil.virtual_memory().total / (1024**3)
        cpu_count = psutil.cpu_count() or 1

        if memory_gb < 8:
            self.database.memory_limit = "1GB"
            self.model.n_ctx = 2048
            self.model.n_gpu_layers = 10
        elif memory_gb >= 16:
            self.database.memory_limit = "4GB"
            self.model.n_gpu_layers = 35

        self.database.threads = min(cpu_count, 8)
        self.model.n_threads = max(1, min(cpu_count - 1, 8))

    def _load_from_env(self):
        """Load configuration from environment variables."""
        # Model settings
        if os.getenv("MODEL_PATH"):
            self.model.model_path = os.getenv("MODEL_PATH")
        if os.getenv("MODEL_N_CTX"):
            self.model.n_ctx = int(os.getenv("MODEL_N_CTX"))
        if os.getenv("MODEL_N_GPU_LAYERS"):
            self.model.n_gpu_layers = int(os.getenv("MODEL_N_GPU_LAYERS"))
        if os.getenv("MODEL_CORRECTION_ATTEMPTS"):
            self.model.correction_attempts = int(os.getenv("MODEL_CORRECTION_ATTEMPTS"))

        # Database settings
        if os.getenv("DB_PATH"):
            self.database.db_path = os.getenv("DB_PATH")
        if os.getenv("DB_MEMORY_LIMIT"):
            self.database.memory_limit = os.getenv("DB_MEMORY_LIMIT")

        # Cache and persistence
        if os.getenv("CACHE_DIR"):
            self.cache.cache_dir = os.getenv("CACHE_DIR")
        if os.getenv("PINNED_QUERIES_PATH"):
            self.persistence.durable_path = os.getenv("PINNED_QUERIES_PATH")
        if os.getenv("SEMANTIC_LAYER_PATH"):
            self.semantic.layer_path = os.getenv("SEMANTIC_LAYER_PATH")

        # Logging settings
        if os.getenv("LOG_LEVEL"):
            self.logging.level = os.getenv("LOG_LEVEL")

    def load_from_file(self, config_file: str):
        """Load configuration from JSON file."""
        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except (OSError, ValueError) as e:
            print(f"Warning: Could not load config file {config_file}: {e}")
            return

        sections = {
            "database": self.database,
            "model": self.model,
            "cache": self.cache,
            "persistence": self.persistence,
            "semantic": self.semantic,
            "logging": self.logging,
            "flags": self.flags,
        }
        for name, section in sections.items():
            for key, value in config_data.get(name, {}).items():
                if hasattr(section, key):
                    setattr(section, key, value)

    def validate(self) -> bool:
        """Validate configuration settings."""
        errors = []

        if not os.path.exists(self.semantic.layer_path):
            errors.append(f"Semantic layer document not found: {self.semantic.layer_path}")
        # The model is only needed for natural-language prompts; SQL and spec paths work without it
        if not os.path.exists(self.model.model_path):
            print(f"Warning: Model file not found: {self.model.model_path}. "
                  f"Natural-language prompts will be unavailable.")
        if self.cache.metadata_limit < 1:
            errors.append(f"Metadata cache limit must be positive, got {self.cache.metadata_limit}")
        if self.persistence.transient_limit < 1:
            errors.append(f"Transient pin limit must be positive, got {self.persistence.transient_limit}")

        if errors:
            print("Configuration validation errors:")
            for error in errors:
                print(f"  - {error}")
            return False

        return True


# Global configuration instance
config = Config()
