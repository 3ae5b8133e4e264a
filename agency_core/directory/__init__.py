from agency_core.directory.api import router
from agency_core.directory.seed import DEFAULT_TEMPLATES, seed_role_templates
from agency_core.directory.service import DirectoryService, directory_service

__all__ = ["DEFAULT_TEMPLATES", "DirectoryService", "directory_service", "router", "seed_role_templates"]
