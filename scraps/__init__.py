"""
scraps
Configuration-driven site crawler and structured content extractor.

Follows declared link patterns across a site and turns every visited page
into a structured entity (pages, repeating components, multi-valued fields)
described by a JSON config.

CLI Usage:
    python -m scraps <config.json> [options]

    Options:
        --parallel      Override maxParallelPages
        --static        requests + BeautifulSoup backend (no JavaScript)
        --output-json   Export entities, stats and errors to one JSON file
        --verbose       Debug logging
"""

from .config import CrawlRule, EntryPoint, ExtractionConfig, ScrapsConfig, load_config
from .dom import DomQuery, PlaywrightDom, SoupDom
from .errors import ConfigError, ContractViolation, NavigationError, ScrapsError
from .extractor import Extractor, extract_entity
from .follow import CrawlState, LinkFollower
from .hooks import CrawlHooks
from .main import CrawlResult, Scraps
from .pool import PagePool
from .queue import Operation, OperationQueue
from .settings import ScrapsSettings
from .storage import FileStorage, MemoryStorage, Storage

__all__ = [
    'Scraps',
    'CrawlResult',
    # Config
    'ScrapsConfig',
    'ScrapsSettings',
    'ExtractionConfig',
    'CrawlRule',
    'EntryPoint',
    'load_config',
    # Scheduling
    'Operation',
    'OperationQueue',
    'PagePool',
    'CrawlState',
    'LinkFollower',
    # Extraction
    'Extractor',
    'extract_entity',
    'DomQuery',
    'SoupDom',
    'PlaywrightDom',
    # Collaborators
    'CrawlHooks',
    'Storage',
    'FileStorage',
    'MemoryStorage',
    # Errors
    'ScrapsError',
    'ConfigError',
    'ContractViolation',
    'NavigationError',
]

__version__ = '1.0.0'
