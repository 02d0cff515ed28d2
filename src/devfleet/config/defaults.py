"""Default paths and the configuration template for `devfleet init`."""

DEFAULT_CONFIG_PATH = "config/dev.yml"
DEFAULT_ENV_FILE = ".env"

# Devcontainer path the deploy command looks at when nothing else is set.
DEFAULT_DEVCONTAINER_PATH = ".devcontainer/devcontainer.json"

CONFIG_TEMPLATE = """\
# DevFleet configuration
service: myapp-dev

# Image reference, or a path to a devcontainer.json
image: .devcontainer/devcontainer.json

# build:
#   devcontainer: .devcontainer/devcontainer.json
#   context: .

provider:
  type: upcloud
  zone: us-nyc1
  plan: 1xCPU-2GB
  # Credentials default to the UPCLOUD_USERNAME / UPCLOUD_PASSWORD env vars

vms:
  count: 1

naming:
  pattern: "{service}-{index}"

ssh:
  key_path: ~/.ssh/id_rsa.pub

registry:
  server: ghcr.io
  username: REGISTRY_USERNAME
  password: REGISTRY_PASSWORD

# Secret names loaded from secrets_file and injected as <NAME>_B64
secrets: []
secrets_file: .devfleet/secrets

provisioning:
  poll_timeout: 120
  poll_interval: 5
  max_parallel: 1
"""
