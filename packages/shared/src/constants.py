"""
Shared constants for the registry indexing pipeline;
centralized for maintainability across services
"""

# Remote source of registry definitions
REGISTRY_ARCHIVE_URL: str = (
    "https://github.com/v1nvn/enhansome-registry/archive/refs/heads/main.zip"
)
REGISTRY_RAW_BASE_URL: str = (
    "https://raw.githubusercontent.com/v1nvn/enhansome-registry/main"
)

# "v1nvn/enhansome-go" -> "go"
REGISTRY_NAME_PREFIX: str = "enhansome-"
REGISTRY_INDEX_FILE: str = "index.json"
REGISTRY_DATA_FILE: str = "data.json"

# Search index snapshot cache
SEARCH_INDEX_VERSION: int = 1
SEARCH_INDEX_CACHE_KEY: str = "search:index"
SEARCH_INDEX_TTL_SECONDS: int = 24 * 60 * 60

# Candidate over-fetch multiplier for text queries with post-filters
SEARCH_OVERFETCH_FACTOR: int = 3

# Title matches outrank description/category/language matches
SEARCH_FIELD_WEIGHTS: dict[str, float] = {
    "title": 2.0,
    "category": 1.0,
    "language": 0.8,
    "description": 0.5,
}

# Section headers from awesome-lists that are not real categories
SKIP_CATEGORIES: frozenset[str] = frozenset({
    "contents",
    "contributing",
    "contributors",
    "getting started",
    "introduction",
    "license",
    "links",
    "more",
    "related",
    "related lists",
    "related projects",
    "resources",
    "see also",
    "software",
    "star history",
    "table of contents",
    "tips",
    "tips and tricks",
    "todos",
    "uncategorized",
})

# Canonical category label -> raw lowercase spellings seen across registries
CATEGORY_LOOKUP: dict[str, tuple[str, ...]] = {
    "Machine Learning": (
        "ai", "ml", "machine learning", "artificial intelligence",
        "deep learning", "ai and machine learning", "ai/machine learning",
        "neural networks", "ai tools", "ai frameworks",
    ),
    "LLMs": (
        "llm", "llms", "large language models", "language models",
        "generative ai", "knowledge & memory",
    ),
    "AI Agents": ("ai agents", "coding agents", "agents"),
    "NLP": ("natural language processing", "nlp", "text analysis"),
    "Computer Vision": ("computer vision", "image recognition", "ocr"),
    "Web Frameworks": (
        "web frameworks", "web framework", "frameworks", "web", "http",
    ),
    "Databases": ("database", "databases", "database drivers", "db"),
    "ORM": ("orm", "orms", "object-relational mapping"),
    "Testing": ("testing", "test", "tests", "testing frameworks", "mocking"),
    "Logging": ("logging", "logs", "log management"),
    "Authentication": ("authentication", "auth", "oauth", "authorization"),
    "Security": ("security", "cryptography", "encryption"),
    "CLI": ("cli", "command line", "command-line", "command line tools"),
    "Configuration": ("configuration", "config", "settings"),
    "Utilities": ("utils", "utilities", "utility", "general utilities"),
    "Miscellaneous": ("other", "others", "misc", "miscellaneous"),
    "Finance": ("finance", "fintech", "finance & fintech"),
    "Developer Tools": ("developer tools", "dev tools", "development tools"),
    "Deployment": ("deployment", "devops", "ci/cd", "continuous integration"),
    "Monitoring": ("monitoring", "observability", "metrics"),
    "Networking": ("networking", "network"),
    "Data Processing": ("data processing", "data", "etl"),
    "Media": ("media", "audio", "video", "media streaming"),
    "Communication": ("communication", "chat", "messaging", "email"),
    "Documentation": ("documentation", "docs"),
    "File Management": ("file management", "files", "file transfer"),
}

CATEGORY_MAPPINGS: dict[str, str] = {
    raw: canonical
    for canonical, spellings in CATEGORY_LOOKUP.items()
    for raw in spellings
}

# Mass nouns never pluralized as the last word of a label
SINGULAR_CATEGORY_WORDS: frozenset[str] = frozenset({
    "authentication", "authorization", "compliance", "data", "deployment",
    "documentation", "encryption", "hardware", "infrastructure",
    "internationalization", "localization", "media", "middleware",
    "optimization", "performance", "research", "security", "software",
    "storage", "validation",
})

# Words kept verbatim when title-casing a category label
CATEGORY_ACRONYMS: frozenset[str] = frozenset({
    "API", "CI", "CMS", "CSS", "DB", "GUI", "HR", "IDE", "iOS", "LLM",
    "ML", "OAuth", "ORM", "SDK", "SQL", "UI", "UX", "VS", "Web3",
})
