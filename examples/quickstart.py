"""Quickstart: simulate a bidirectional corridor in three lines."""

import anisoped

engine = anisoped.make("corridor-v0", n_departures=10, group_size=2.0)
result = engine.simulate()

print(result)
print(f"Time step: {result.delta_t:.2f} s over {result.steps} steps")
for g in result.groups[:4]:
    print(f"  {g.route} dep {g.dep_time:>2d}: "
          f"mean {g.stats.mean:.2f} s, std {g.stats.std:.2f} s, "
          f"arrived {g.stats.rel_loss:.0%}")
