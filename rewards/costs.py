from typing import Optional

from ledger.config import SpendRates
from ledger.models import ResourceInfo
from ledger.service import round_half_up

BYTES_PER_MB = 1024 * 1024


def is_file_resource(resource: ResourceInfo) -> bool:
    """A stored filename means the resource lives in object storage; a bare url is an external link."""
    if resource.filename:
        return True
    if resource.url:
        return False
    return resource.resource_type == "file"


class CostCalculator:
    """Pure spend-side pricing. No ledger access; safe for UI previews."""

    def __init__(self, rates: Optional[SpendRates] = None):
        self.rates = rates or SpendRates()

    def download_cost(self, file_size_bytes: int) -> int:
        r = self.rates
        size_mb = file_size_bytes / BYTES_PER_MB
        if size_mb <= r.download_min_size_mb:
            return r.file_download_min
        if size_mb >= r.download_max_size_mb:
            return r.file_download_max
        ratio = (size_mb - r.download_min_size_mb) / (r.download_max_size_mb - r.download_min_size_mb)
        return round_half_up(r.file_download_min + ratio * (r.file_download_max - r.file_download_min))

    def purchase_cost(self, file_size_bytes: int, is_stored_file: bool) -> int:
        if not is_stored_file:
            return 0
        return self.rates.purchase_base_fee + self.download_cost(file_size_bytes)

    def resource_purchase_cost(self, resource: ResourceInfo) -> int:
        return self.purchase_cost(resource.file_size_bytes, is_file_resource(resource))
