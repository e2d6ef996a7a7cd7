from typing import Optional
from urllib.parse import quote

from pydantic_settings import BaseSettings, SettingsConfigDict

from event_jobs.core.constants import Environment


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment Profile
    environment: Environment = Environment.LOCAL
    log_level: str = "INFO"

    # AMQP broker
    amqp_host: str = "localhost"
    amqp_port: int = 5672
    amqp_username: Optional[str] = None
    amqp_password: Optional[str] = None
    amqp_vhost: str = ""
    amqp_heartbeat: int = 15
    amqp_requeue: bool = False  # nack policy for failed dispatches

    # AMQP TLS
    amqp_use_tls: bool = False
    amqp_ca_file: Optional[str] = None
    amqp_cert_file: Optional[str] = None
    amqp_key_file: Optional[str] = None

    # AMQP reconnect
    amqp_reconnect_backoff: int = 10  # seconds
    amqp_reconnect_max_retries: int = 5

    @property
    def amqp_url(self) -> str:
        """Construct broker URL from components."""
        scheme = "amqps" if self.amqp_use_tls else "amqp"
        if self.amqp_username and self.amqp_password:
            credentials = f"{quote(self.amqp_username, safe='')}:{quote(self.amqp_password, safe='')}@"
        else:
            credentials = ""
        vhost = quote(self.amqp_vhost, safe="")
        return f"{scheme}://{credentials}{self.amqp_host}:{self.amqp_port}/{vhost}?heartbeat={self.amqp_heartbeat}"

    # Kubernetes
    docker_registry: Optional[str] = None
    pod_namespace: str = "default"  # namespace holding the config map
    kubernetes_job_scope: str = "default"  # default namespace for jobs
    config_map_name: str = "event-job-provisioner-configs"

    # Configuration reload
    reload_enabled: bool = True
    reload_interval: int = 60  # seconds

    # OpenTelemetry
    otel_service_name: str = "kubernetes-event-jobs"
    otel_exporter_endpoint: Optional[str] = None
    otel_exporter_token: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION


settings = Settings()
