"""CMS content migration tool.

Copies customer content from the live environment (local content folders and
Azure Blob containers) into the UAT storage account.
"""

__version__ = "1.0.0"
__author__ = "DataBridge"

from cms_migrator.config import Config, load_config
from cms_migrator.core.orchestrator import MigrationOrchestrator
