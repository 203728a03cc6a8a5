"""Provider name to adapter lookup."""
from paysync.errors import UnsupportedOperation
from paysync.providers.base import ProviderAdapter
from paysync.providers.coupang import CoupangAdapter
from paysync.providers.naver import NaverAdapter

ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "naver": NaverAdapter,
    "coupang": CoupangAdapter,
}

SUPPORTED_PROVIDERS = tuple(sorted(ADAPTERS))


def get_adapter(provider: str, **kwargs) -> ProviderAdapter:
    adapter_cls = ADAPTERS.get(provider)
    if adapter_cls is None:
        raise UnsupportedOperation(provider, "adapter", "unknown provider")
    return adapter_cls(**kwargs)
