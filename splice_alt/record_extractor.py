"""
Record Extractor: turn captured API bodies into MetadataRecords.

Two response shapes are recognised:

    /v2/premium/samples/<id>   -> {"sample": {...}, "sample_meta_data": {...}}
    /www/me/premium            -> {"samples": [{"sample_meta_data": {...}, ...}, ...]}

Anything else yields no records. Empty bodies and malformed JSON are logged
and dropped; extract() never raises.
"""

import json
import logging
import re
from typing import Any, Dict, List

from .metadata import DEFAULT_SOURCE_SUFFIX, MetadataRecord, content_hash_from_payload

logger = logging.getLogger("splice-alt.extract")

SINGLE_SAMPLE_PATTERN = re.compile(r"/v2/premium/samples/([^/?#]+)")
BATCH_MARKER = "/www/me/premium"


class RecordExtractor:
    """Stateless parser from response text to records."""

    def __init__(self, source_suffix: str = DEFAULT_SOURCE_SUFFIX):
        self.source_suffix = source_suffix
        self.parse_errors = 0

    def extract(self, text: str, url: str) -> List[MetadataRecord]:
        if not text or not text.strip():
            logger.debug(f"[EXTRACT] Empty response body, skipping: {url}")
            return []

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            self.parse_errors += 1
            logger.error(f"[EXTRACT] Failed to parse API response from {url}: {e}")
            logger.error(f"[EXTRACT]   Length: {len(text)}, preview: {text[:200]!r}")
            return []

        if not isinstance(data, dict):
            logger.info(f"[EXTRACT] Non-object response ignored: {url}")
            return []

        single = SINGLE_SAMPLE_PATTERN.search(url)
        if single:
            return self._extract_single(data, single.group(1), url)
        if BATCH_MARKER in url:
            return self._extract_batch(data, url)

        logger.info(f"[EXTRACT] Unrecognized API response structure for: {url}")
        return []

    def _extract_single(self, data: Dict[str, Any], sample_id: str, url: str) -> List[MetadataRecord]:
        if not (data.get("sample_meta_data") and data.get("sample")):
            logger.info(
                f"[EXTRACT] Sample response missing expected structure "
                f"(sample_meta_data={'sample_meta_data' in data}, sample={'sample' in data})"
            )
            return []

        record = MetadataRecord.from_item(data, sample_id, source_url=url, source_suffix=self.source_suffix)
        if record is None:
            logger.warning(f"[EXTRACT] Could not find a filename in sample {sample_id}")
            return []

        logger.info(f"[EXTRACT] Sample {sample_id}: {record.filename} (pack={record.pack_name})")
        return [record]

    def _extract_batch(self, data: Dict[str, Any], url: str) -> List[MetadataRecord]:
        samples = data.get("samples")
        if not isinstance(samples, list):
            logger.info(f"[EXTRACT] Premium response without a samples list: {url}")
            return []

        records: List[MetadataRecord] = []
        for index, item in enumerate(samples):
            if not isinstance(item, dict) or not isinstance(item.get("sample_meta_data"), dict):
                continue
            record_id = content_hash_from_payload(item) or f"batch_{index}"
            record = MetadataRecord.from_item(item, record_id, source_url=url, source_suffix=self.source_suffix)
            if record is None:
                logger.warning(f"[EXTRACT] Batch entry {index} has no filename, skipped")
                continue
            records.append(record)

        logger.info(f"[EXTRACT] Batch response: {len(records)}/{len(samples)} samples captured")
        return records
