import argparse
import os
import sys
import subset_utils

__version__ = "1.0.0"
version = f"subset_launcher {__version__}"


class UsageAction(argparse.Action):
    # -h/--help exits 1, like a usage error
    def __init__(self, option_strings, dest=argparse.SUPPRESS, default=argparse.SUPPRESS, help=None):
        super().__init__(option_strings, dest=dest, default=default, nargs=0, help=help)

    def __call__(self, parser, namespace, values, option_string=None):
        parser.print_help()
        parser.exit(1)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="subset-launcher",
        add_help=False,
        description="Run a command once per A/C/G/T subset and concatenate the outputs.",
    )
    parser.add_argument("-j", "--jobs", type=str, required=True, help="number of subsets: 4, 16 or 64")
    parser.add_argument("-c", "--command", type=str, required=True, help="command to run, --subset=<subset> is appended")
    parser.add_argument("-q", "--use-qsub", default=False, action="store_true", help="submit each script with qsub instead of running it locally")
    parser.add_argument("-o", "--output-aggregate", action="append", default=[], metavar="FILE", help="also concatenate <subset>/FILE* into FILE, may be repeated")
    parser.add_argument("-w", "--workdir", type=str, default=".", help="directory holding subset directories and aggregates")
    parser.add_argument("-n", "--dry-run", default=False, action="store_true", help="write scripts and print commands without running them")
    parser.add_argument("-s", "--stop-on-failure", default=False, action="store_true", help="skip aggregation when any job exits non-zero")
    parser.add_argument("--qsub-command", type=str, default=subset_utils.QSUB_COMMAND, help="submitter used with --use-qsub")
    parser.add_argument("--version", action="version", version=version)
    parser.add_argument("-h", "--help", action=UsageAction, help="show this help message and exit")
    return parser


def run(config):
    subsets = subset_utils.generate_subsets(config.jobs)

    try:
        os.makedirs(config.workdir, exist_ok=True)
    except OSError as e:
        raise subset_utils.SubsetLauncherError(
            [f"In directory '{os.getcwd()}':", f"Cannot create directory '{e.filename}': {e.strerror}"]
        )

    ######################################################

    jobs = subset_utils.dispatch_jobs(config, subsets)
    results = subset_utils.wait_jobs(jobs)

    if not config.dry_run:
        subset_utils.write_job_report(results, config.workdir)

    failed = subset_utils.failed_jobs(results)
    for r in failed:
        print(f"WARNING: job {r.subset} in {r.directory} exited with status {r.returncode}", file=sys.stderr)

    if failed and config.stop_on_failure:
        raise subset_utils.SubsetLauncherError(
            f"{len(failed)} of {len(results)} jobs failed, skipping aggregation"
        )

    ######################################################

    subset_utils.aggregate_outputs(config, subsets)

    print("Done", flush=True)
    return results


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = subset_utils.make_config(
            args.jobs,
            args.command,
            use_qsub=args.use_qsub,
            output_aggregate=args.output_aggregate,
            workdir=args.workdir,
            dry_run=args.dry_run,
            stop_on_failure=args.stop_on_failure,
            qsub_command=args.qsub_command,
        )
        run(config)
    except subset_utils.SubsetLauncherError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    return 0


if __name__ == "__main__":
    main()
