"""
RBAC (Role-Based Access Control) application.

Provides the hospital authorization engine:
- Permission catalog with roles, legacy role mappings and dependencies
- Effective permission resolution with deny-overrides-allow
- Time-bounded temporary permissions
- Segregation-of-duties rules
- Versioned permission cache
- Append-only session and action audit trail
"""
