"""Migration configuration model."""

from typing import Optional, Dict, Set

from pydantic import BaseModel, Field, validator

TARGET_PLATFORMS = ('kubernetes', 'openshift', 'docker-compose')
OPTIONAL_COMPONENTS = ('helm', 'dockerfile', 'cicd', 'monitoring')


class MigrationConfiguration(BaseModel):
    """Settings that shape the artifacts generated for one repository."""

    target_platform: str = Field(
        default='kubernetes', description='Deployment target platform'
    )
    optional_components: Set[str] = Field(
        default_factory=lambda: {'helm', 'dockerfile'},
        description='Optional artifacts to generate',
    )
    custom_settings: Dict[str, str] = Field(
        default_factory=dict, description='Free-form settings (base-image, ...)'
    )
    template_name: Optional[str] = Field(default=None, description='Template name')
    enable_validation: bool = Field(
        default=True, description='Validate generated artifacts'
    )

    @validator('target_platform')
    def validate_target_platform(cls, v):
        """Validate target platform."""
        v = v.strip().lower()
        if v not in TARGET_PLATFORMS:
            raise ValueError(f'Target platform must be one of: {list(TARGET_PLATFORMS)}')
        return v

    @validator('optional_components')
    def validate_optional_components(cls, v):
        """Validate optional components."""
        components = {c.strip().lower() for c in v}
        unknown = components - set(OPTIONAL_COMPONENTS)
        if unknown:
            raise ValueError(
                f'Unknown components {sorted(unknown)}; '
                f'valid components: {list(OPTIONAL_COMPONENTS)}'
            )
        return components

    def has_component(self, component: str) -> bool:
        return component in self.optional_components

    def set_component(self, component: str, enabled: bool) -> None:
        """Enable or disable an optional component."""
        if component not in OPTIONAL_COMPONENTS:
            raise ValueError(f'Unknown component: {component}')
        if enabled:
            self.optional_components.add(component)
        else:
            self.optional_components.discard(component)

    @property
    def include_helm(self) -> bool:
        return self.has_component('helm')

    @property
    def include_dockerfile(self) -> bool:
        return self.has_component('dockerfile')

    @property
    def include_cicd(self) -> bool:
        return self.has_component('cicd')

    @property
    def include_monitoring(self) -> bool:
        return self.has_component('monitoring')

    def get_custom_setting(self, key: str) -> Optional[str]:
        return self.custom_settings.get(key)

    def set_custom_setting(self, key: str, value: Optional[str]) -> None:
        """Set a custom setting; blank values remove the key."""
        if value is not None and value.strip():
            self.custom_settings[key] = value
        else:
            self.custom_settings.pop(key, None)

    @property
    def base_image(self) -> Optional[str]:
        return self.get_custom_setting('base-image')

    @property
    def resource_limits(self) -> Optional[str]:
        return self.get_custom_setting('resource-limits')
