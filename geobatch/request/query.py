"""Turn Records into signed queries ready for dispatch."""

from __future__ import annotations

from geobatch.common.config_loader import GeocodeConfig
from geobatch.common.models import Record, SignedQuery
from geobatch.request.builder import build_url
from geobatch.request.signer import sign_url


def prepare_query(record: Record, config: GeocodeConfig) -> SignedQuery:
    url = build_url(record.address, record.sensor, config.client_id)
    if config.key:
        url = sign_url(url, config.key)
    return SignedQuery(record=record, url=url)
