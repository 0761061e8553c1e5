# main.py
import pulumi
from config import config_file_path, load_config, parse_config
from loadbalancer import InternalLoadBalancerBuilder


def main():
    # Load and validate YAML configuration before declaring anything
    try:
        config = parse_config(load_config(config_file_path()))
    except Exception as e:
        pulumi.log.error(f"Failed to load configuration: {e}")
        raise

    builder = InternalLoadBalancerBuilder(config)

    # Build resources
    try:
        builder.build()
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    # Export identifiers of created resources
    for name, value in builder.outputs().items():
        try:
            pulumi.export(name, value)
        except Exception as e:
            pulumi.log.warn(f"Failed to export output '{name}': {e}")


if __name__ == "__main__":
    main()
