import os
import subprocess
import itertools
import shlex
from collections import namedtuple
import pandas as pd

BASES = "ACGT"
JOB_COUNTS = {4: 1, 16: 2, 64: 3}  # jobs -> subset length
FIXED_AGGREGATES = ["script.o", "script.e"]
QSUB_COMMAND = "qsub -cwd -sync y"  # synchronous submission in the current dir
JOB_REPORT = "subset_jobs.tsv"

JobConfig = namedtuple(
    "JobConfig",
    [
        "jobs",
        "command",
        "use_qsub",
        "output_aggregate",
        "workdir",
        "dry_run",
        "stop_on_failure",
        "qsub_command",
    ],
    defaults=(False, (), ".", False, False, QSUB_COMMAND),
)

Job = namedtuple("Job", ["subset", "directory", "command", "launch", "process"])

JobResult = namedtuple(
    "JobResult", ["subset", "directory", "command", "launch", "returncode"]
)


#
#  Errors raised here are caught once in subset_launcher.main() and printed
#  with an ERROR: prefix.  A list of messages is printed one per line.
#
class SubsetLauncherError(Exception):
    def __init__(self, messages):
        if isinstance(messages, (list, tuple)):
            messages = "\n  ".join(messages)
        self.message = messages
        super().__init__(messages)

    def __str__(self):
        return self.message


class InvalidJobCount(SubsetLauncherError):
    def __init__(self, jobs):
        self.jobs = jobs
        allowed = ", ".join(str(j) for j in JOB_COUNTS)
        super().__init__(f"invalid number of jobs '{jobs}', must be one of {allowed}")


def make_config(
    jobs,
    command,
    use_qsub=False,
    output_aggregate=None,
    workdir=".",
    dry_run=False,
    stop_on_failure=False,
    qsub_command=QSUB_COMMAND,
):
    try:
        jobs = int(jobs)
    except (TypeError, ValueError):
        raise InvalidJobCount(jobs)
    if jobs not in JOB_COUNTS:
        raise InvalidJobCount(jobs)
    if not command:
        raise SubsetLauncherError("empty --command")
    if os.path.exists(workdir) and not os.path.isdir(workdir):
        raise SubsetLauncherError(f"workdir '{workdir}' exists and is not a directory")

    # fixed names first, then user names in order; drop repeats so two
    # concatenations never write the same file
    names = []
    for name in output_aggregate or []:
        if name not in FIXED_AGGREGATES and name not in names:
            names.append(name)

    return JobConfig(
        jobs=jobs,
        command=command,
        use_qsub=bool(use_qsub),
        output_aggregate=tuple(names),
        workdir=workdir,
        dry_run=bool(dry_run),
        stop_on_failure=bool(stop_on_failure),
        qsub_command=qsub_command,
    )


def generate_subsets(jobs):
    if jobs not in JOB_COUNTS:
        raise InvalidJobCount(jobs)
    # itertools.product keeps the first base as the outer loop
    return ["".join(p) for p in itertools.product(BASES, repeat=JOB_COUNTS[jobs])]


######################################################
#  Dispatcher
######################################################


def subset_command(command, subset):
    return f"{command} --subset={subset}"


def launch_command(config, effective_command):
    if config.use_qsub:
        return f"{config.qsub_command} script"
    return f"{effective_command} >script.out 2>script.err"


def write_script(directory, effective_command):
    script = os.path.join(directory, "script")
    with open(script, "w") as f:
        f.write(f"{effective_command}\n")
    return script


def start_process(command, cwd):
    # OSError from Popen is fatal to the whole run
    return subprocess.Popen(command, shell=True, cwd=cwd)


def dispatch_job(config, subset):
    directory = os.path.join(config.workdir, subset)
    os.makedirs(directory, exist_ok=True)

    effective = subset_command(config.command, subset)
    write_script(directory, effective)
    launch = launch_command(config, effective)

    process = None
    if config.dry_run:
        print(f"dry run in {directory}: {launch}", flush=True)
    else:
        process = start_process(launch, directory)
        print(f"launching in {directory}: {launch}", flush=True)

    return Job(subset, directory, effective, launch, process)


def dispatch_jobs(config, subsets):
    return [dispatch_job(config, subset) for subset in subsets]


def wait_jobs(jobs):
    results = []
    for job in jobs:
        returncode = job.process.wait() if job.process is not None else None
        results.append(
            JobResult(job.subset, job.directory, job.command, job.launch, returncode)
        )
    return results


def failed_jobs(results):
    return [r for r in results if r.returncode not in (None, 0)]


def write_job_report(results, workdir):
    report = os.path.join(workdir, JOB_REPORT)
    df = pd.DataFrame(
        [r._asdict() for r in results], columns=list(JobResult._fields)
    )
    df["returncode"] = df["returncode"].astype("Int64")
    df.to_csv(report, sep="\t", index=None)
    return report


######################################################
#  Aggregator
######################################################


def aggregate_names(config):
    return FIXED_AGGREGATES + list(config.output_aggregate)


def aggregate_command(name, subsets):
    # quote the literal part only, the trailing * must stay a glob
    sources = " ".join(f"{shlex.quote(subset + '/' + name)}*" for subset in subsets)
    return f"cat {sources} > {shlex.quote(name)}"


def aggregate_outputs(config, subsets):
    commands = [aggregate_command(name, subsets) for name in aggregate_names(config)]

    processes = []
    for command in commands:
        print(command, flush=True)
        if not config.dry_run:
            processes.append(start_process(command, config.workdir))

    # a glob that matches nothing only leaves a shorter aggregate
    for p in processes:
        p.wait()

    return commands
