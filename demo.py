from __future__ import annotations

import multiprocessing as mp
from pathlib import Path

from mcfeedback import TrajectoryFramework, TrajectorySimulation
from mcfeedback.io import load_binary, read_summary, save_binary, write_summary
from mcfeedback.stats import summaries_agree


def progress(completed: int, total: int):
    step = max(1, total // 10)
    if completed % step == 0 or completed == total:
        print(f"Progress: {completed}/{total} ({100 * completed / total:.0f}%)")


def main(n_trials: int = 20_000, n_steps: int = 100, out_dir: str = "output"):
    n_workers = max(2, mp.cpu_count())
    fw = TrajectoryFramework()

    for name, seed in (("serial", 1), ("threads", 2), ("shared", 3)):
        sim = TrajectorySimulation(x0=[1.0, 0.0], name=name)
        sim.set_seed(seed)
        fw.register_simulation(sim)

    serial = fw.run_simulation("serial", n_trials, n_steps, backend="sequential", progress_callback=progress)
    threads = fw.run_simulation("threads", n_trials, n_steps, backend="thread", n_workers=n_workers)
    shared = fw.run_simulation("shared", n_trials, n_steps, backend="shared", n_workers=n_workers)

    for res in (serial, threads, shared):
        print(res.result_to_string())

    print("Final-step means:", fw.compare_results(["serial", "threads", "shared"], metric="final_mean"))
    print("Serial vs threads agree:", summaries_agree(serial.summary, threads.summary, z_max=5.0))
    print("Serial vs shared agree:", summaries_agree(serial.summary, shared.summary, z_max=5.0))

    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    bin_path = save_binary(out / "states.bin", shared.states)
    csv_path = write_summary(out / "summary.csv", shared.summary, precision=6)

    reloaded = load_binary(bin_path, shared.states.shape)
    print("Binary round trip exact:", bool((reloaded == shared.states).all()))
    print(read_summary(csv_path).tail())


if __name__ == "__main__":
    main()
