#!/usr/bin/env python3
import argparse
import logging
import os
import sys
from datetime import datetime

import yaml
from kubernetes import client, config as kube_config

from volume_fstype.errors import PreflightError
from volume_fstype.orchestrator import DEFAULT_SCENARIOS, EXT4_FSTYPE, INVALID_FSTYPE, FstypeOrchestrator
from volume_fstype.utils.log_integration import collect_logs_on_test_failure
from volume_fstype.utils.metrics_collector import MetricsCollector
from volume_fstype.utils.report_generator import ReportGenerator


def setup_logging(config):
    """Setup logging based on configuration

    Args:
        config: Configuration dictionary
    """
    log_config = config.get('logging', {})
    log_level = getattr(logging, log_config.get('level', 'INFO'))
    handlers = [logging.StreamHandler()]

    if log_config.get('file_enabled', True):
        log_file = log_config.get('file', 'logs/volume_fstype_tests.log')
        os.makedirs(os.path.dirname(log_file) or '.', exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )

    return logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(description='Run volume fstype lifecycle scenarios')
    parser.add_argument(
        '--config',
        default='config/orchestrator_config.yaml',
        help='Path to configuration file'
    )
    parser.add_argument(
        '--namespace',
        help='Namespace for test resources (overrides config value)'
    )
    parser.add_argument(
        '--scenario',
        choices=['valid', 'default', 'invalid', 'all'],
        default='all',
        help='Scenario to run'
    )
    parser.add_argument(
        '--fstype',
        help='Filesystem type for the valid or invalid scenario'
    )
    parser.add_argument(
        '--parallel',
        type=int,
        default=None,
        help='Number of scenarios to run concurrently (overrides config value)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print what would be done without executing scenarios'
    )
    return parser.parse_args(argv)


def load_config(config_path):
    """Load configuration from YAML file

    Args:
        config_path: Path to configuration file

    Returns:
        Loaded configuration as dictionary
    """
    try:
        with open(config_path, 'r') as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        print(f"Error loading configuration: {e}")
        sys.exit(1)


def check_cluster_access():
    """Check that the kubeconfig credentials work with a harmless API call"""
    try:
        kube_config.load_kube_config()
    except kube_config.ConfigException:
        kube_config.load_incluster_config()
    try:
        client.CoreV1Api().list_namespace(_request_timeout=10)
        return True
    except client.exceptions.ApiException as e:
        # Other API errors still prove the credentials were accepted
        return e.status not in (401, 403)


def select_scenarios(args, config):
    """Translate --scenario/--fstype into scenario dicts for the orchestrator

    Returns None to run the list from the config file.
    """
    if args.scenario == 'all' and not args.fstype:
        return None
    if args.scenario == 'valid':
        fstype = args.fstype or 'ext3'
        return [{"type": "valid", "fstype": fstype, "expected": fstype}]
    if args.scenario == 'default':
        return [{"type": "default"}]
    if args.scenario == 'invalid':
        return [{"type": "invalid", "fstype": args.fstype or INVALID_FSTYPE}]
    fstype = args.fstype
    return [
        {"type": "valid", "fstype": fstype, "expected": fstype},
        {"type": "default"},
        {"type": "invalid", "fstype": INVALID_FSTYPE},
    ]


def describe_scenarios(scenarios, config):
    default_fstype = config.get('scenarios', {}).get('default_fstype', EXT4_FSTYPE)
    lines = []
    for scenario in scenarios:
        if scenario['type'] == 'valid':
            lines.append(f"valid: fstype={scenario['fstype']!r}, expect {scenario.get('expected', scenario['fstype'])!r}")
        elif scenario['type'] == 'default':
            lines.append(f"default: fstype='', expect {default_fstype!r}")
        else:
            lines.append(f"invalid: fstype={scenario.get('fstype', INVALID_FSTYPE)!r}, expect MountDevice failure")
    return lines


def write_reports(report, config, metrics_collector, logger):
    report_dir = config.get('reporting', {}).get('output_dir', 'reports')
    report_generator = ReportGenerator(output_dir=report_dir)
    test_name = f"volume_fstype_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    json_path = report_generator.generate_json_report(report, test_name, metrics=metrics_collector.get_all_metrics())
    summary_path = report_generator.generate_summary_report(report, test_name)
    logger.info(f"JSON report generated: {json_path}")
    logger.info(f"Summary report generated: {summary_path}")


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    config = load_config(args.config)
    if args.parallel is not None:
        config.setdefault('scenarios', {})['parallel_workers'] = args.parallel

    logger = setup_logging(config)
    logger.info(f"Starting volume fstype scenarios with configuration from {args.config}")

    scenarios = select_scenarios(args, config)
    if args.dry_run:
        planned = scenarios or config.get('scenarios', {}).get('list', DEFAULT_SCENARIOS)
        logger.info("DRY RUN MODE: would run the following scenarios")
        for line in describe_scenarios(planned, config):
            logger.info(f"  {line}")
        return 0

    if not check_cluster_access():
        logger.error("Kubernetes credentials are expired or invalid")
        return 1

    metrics_collector = MetricsCollector()
    orchestrator = FstypeOrchestrator(config=config, namespace=args.namespace, metrics_collector=metrics_collector)
    try:
        report = orchestrator.run_test(scenarios)
    except PreflightError as e:
        logger.error(f"Preflight check failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Error running scenarios: {e}", exc_info=True)
        if config.get('failure_logs', {}).get('enabled', False):
            logs_path = collect_logs_on_test_failure(
                f"volume_fstype_failure_{datetime.now().strftime('%Y%m%d_%H%M%S')}",
                metrics_collector,
                output_dir=config.get('failure_logs', {}).get('output_dir', 'logs'),
            )
            logger.info(f"Failure logs collected to: {logs_path}")
        return 1

    write_reports(report, config, metrics_collector, logger)
    return 0 if orchestrator.all_passed else 1


if __name__ == "__main__":
    sys.exit(main())
