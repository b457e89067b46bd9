from .paths import atomic_write_text, ensure_dir  # noqa: F401
