"""kubeoauth - per-tenant OAuth credential lifecycle on Kubernetes.

Exchanges provider authorization codes for tokens, provisions each tenant's
namespace and access grants, stores the credential as a cluster secret and
keeps it fresh with a background refresh sweep.
"""

__version__ = "0.1.0"
