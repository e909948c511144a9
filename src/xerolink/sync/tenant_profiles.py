"""Per-tenant defaults for created child items."""

from xerolink.config.sync import SyncSettings, TenantProfile


# Organisations billing in SGD
BUILTIN_PROFILES: dict[str, TenantProfile] = {
    "6dd39ea4-e6a6-4993-a37a-21482ccf8d22": TenantProfile(currency="SGD"),
}


class TenantProfiles:
    """Lookup table from tenant id to profile, falling back to a default."""

    def __init__(
        self,
        default: TenantProfile | None = None,
        overrides: dict[str, TenantProfile] | None = None,
    ) -> None:
        self.default = default or TenantProfile()
        self._profiles = {**BUILTIN_PROFILES, **(overrides or {})}

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> "TenantProfiles":
        return cls(settings.default_profile, settings.tenant_profiles)

    def for_tenant(self, tenant_id: str) -> TenantProfile:
        return self._profiles.get(tenant_id, self.default)
