"""
aclapi - Network access rule reconciliation for tsuru workloads.

aclapi stores declarative "who may talk to whom" rules and periodically
reconciles them against the Kubernetes resources backing tsuru apps and jobs.
It does not enforce anything itself: it stamps the target resources with a
last-updated annotation so the enforcement agent knows to recompute policies.

It provides:
- Rule validation and storage (SQLite)
- Endpoint resolution through the tsuru API
- Pluggable reconciliation strategies
- Per (rule, strategy) locking with keep-alive and outcome history
- A periodic sync worker with graceful shutdown

Example usage:
    $ aclapi init-db --db acl.db
    $ aclapi add-rules rules.yaml
    $ aclapi worker --config acl.yaml
"""

__version__ = "0.1.0"
__author__ = "aclapi Contributors"

__all__ = [
    "__version__",
    "__author__",
]
