"""SSG content parsers and cross-reference extraction.

Formats:
    - HTML guides: group/rule tree with references
    - HTML tables: rule to identifier mappings (CCE, NIST, STIG...)
    - JSON manifests: profile to rule selections
    - SCAP XML data streams: benchmark, profiles, groups and rules
"""

from ssgkb.ingestion.crossref import (
    extract_data_stream_edges,
    extract_guide_edges,
    extract_manifest_edges,
    extract_table_edges,
    materialize_closure,
)
from ssgkb.ingestion.datastream import (
    ParsedDataStream,
    normalize_mixed_content,
    parse_data_stream,
    parse_data_stream_filename,
)
from ssgkb.ingestion.guide import (
    ParsedGuide,
    parse_guide,
    parse_guide_filename,
)
from ssgkb.ingestion.manifest import (
    ParsedManifest,
    parse_manifest,
    parse_manifest_filename,
)
from ssgkb.ingestion.table import (
    ParsedTable,
    parse_table,
    parse_table_filename,
)

__all__ = [
    # Guides
    "ParsedGuide",
    "parse_guide",
    "parse_guide_filename",
    # Tables
    "ParsedTable",
    "parse_table",
    "parse_table_filename",
    # Manifests
    "ParsedManifest",
    "parse_manifest",
    "parse_manifest_filename",
    # Data streams
    "ParsedDataStream",
    "parse_data_stream",
    "parse_data_stream_filename",
    "normalize_mixed_content",
    # Cross references
    "extract_guide_edges",
    "extract_table_edges",
    "extract_manifest_edges",
    "extract_data_stream_edges",
    "materialize_closure",
]
