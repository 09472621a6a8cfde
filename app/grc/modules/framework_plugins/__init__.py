"""
Framework Plugins module.

Imports compliance framework packages (ISO 27001, SOC 2, custom standards
authored in the framework studio) into the framework tables.

Scope:
- Package schema + validation (schema.validate / schema.validate_json)
- Idempotent install keyed by natural keys (service.install)
- Bundled catalog of packages, admin install/upload endpoints under /admin/frameworks

Hard constraints:
- service.install is the only writer of compliance_frameworks,
  implementation_phases and framework_requirements
- Policies and risks in a package are validated but not persisted
"""
