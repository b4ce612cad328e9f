import logging

from office2md.extractors.data_types import DocumentMetadata
from office2md.extractors.util.package import OoxmlPackage

logger = logging.getLogger(__name__)

CORE_PROPERTIES_PATH = "docProps/core.xml"
CP_NS = "{http://schemas.openxmlformats.org/package/2006/metadata/core-properties}"
DC_NS = "{http://purl.org/dc/elements/1.1/}"
DCTERMS_NS = "{http://purl.org/dc/terms/}"


def read_core_properties(package: OoxmlPackage, metadata: DocumentMetadata) -> None:
    """Copy title, author and dates from ``docProps/core.xml`` into ``metadata``."""
    if not package.exists(CORE_PROPERTIES_PATH):
        return
    logger.debug("Extracting core properties")
    root = package.read_xml_root(CORE_PROPERTIES_PATH)

    title_elem = root.find(f"{DC_NS}title")
    if title_elem is not None and title_elem.text:
        metadata.title = title_elem.text

    creator_elem = root.find(f"{DC_NS}creator")
    if creator_elem is not None and creator_elem.text:
        metadata.author = creator_elem.text

    created_elem = root.find(f"{DCTERMS_NS}created")
    if created_elem is not None and created_elem.text:
        metadata.created = created_elem.text

    modified_elem = root.find(f"{DCTERMS_NS}modified")
    if modified_elem is not None and modified_elem.text:
        metadata.modified = modified_elem.text

    last_modified_by_elem = root.find(f"{CP_NS}lastModifiedBy")
    if last_modified_by_elem is not None and last_modified_by_elem.text:
        metadata.last_modified_by = last_modified_by_elem.text
