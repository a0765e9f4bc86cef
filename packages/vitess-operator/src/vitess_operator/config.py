"""Environment-based configuration for the vitess operator."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Vitess operator configuration.

    All settings can be overridden via environment variables with
    VITESS_OPERATOR_ prefix. For example:
        VITESS_OPERATOR_NAMESPACE=vitess
        VITESS_OPERATOR_MAX_CONCURRENT_RECONCILES=20
    """

    # Object store (Kubernetes API)
    namespace: str = "default"
    kube_api_url: str = "https://kubernetes.default.svc"
    kube_token_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/token"
    kube_ca_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"

    # Topology backend plugin, as "module:callable"
    topo_backend: str = ""

    # Control loop
    max_concurrent_reconciles: int = 10
    resync_period_seconds: float = 30.0

    # Observability
    metrics_port: int = 8080
    log_level: str = "INFO"

    model_config = {"env_prefix": "VITESS_OPERATOR_"}
