"""Record a crossing simulation and plot the densities of the last step."""

import matplotlib.pyplot as plt

from anisoped.io.output import write_system_state
from anisoped.networks.crossing import create_crossing
from anisoped.viz.plot import plot_cells, plot_travel_times
from anisoped.viz.recorder import Recorder

scenario = create_crossing(n_departures=15, group_size=4.0)
engine = scenario.engine()

# Record
recorder = Recorder(engine)
result = recorder.run()
recorder.save("recording.json")
write_system_state(recorder.to_dict()["frames"], "system_state.csv")
print(f"Saved {len(recorder.frames)} frames to recording.json")
print(result)

# Replay one frame from the saved file
data = Recorder.load("recording.json")
busiest = max(data["frames"], key=lambda f: f["metrics"]["total_accumulation"])
print(f"Busiest step {busiest['step']}: "
      f"{busiest['metrics']['total_accumulation']:.1f} people inside")

fig, axes = plt.subplots(1, 2, figsize=(11, 4.5))
plot_cells(engine, ax=axes[0], annotate=True)
plot_travel_times(engine, route="WE", ax=axes[1])
fig.tight_layout()
fig.savefig("crossing.png", dpi=120)
