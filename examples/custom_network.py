"""Build a corridor that forks into two parallel cells and simulate it."""

from anisoped.core.demand import DemandEntry
from anisoped.core.engine import SimulationEngine
from anisoped.core.network import Network
from anisoped.core.parameters import Parameters
from anisoped.core.types import NONE_CELL, FunDiagKind

# Layout:   G_W | E | A | G_E
#                   | B |        (B is a narrow parallel cell)
net = Network()
net.add_cell("G_W", zone="west")
net.add_cell("E", zone="street", area=9.0)
net.add_cell("A", zone="street", area=12.0)
net.add_cell("B", zone="street", area=4.0)
net.add_cell("G_E", zone="east")

net.add_link("G_W", NONE_CELL, "E", "W", "E", length=3.0)
# Fork: people in E choose between A and B by potential
net.add_link("E", "G_W", "A", "W", "E", length=3.0)
net.add_link("E", "G_W", "B", "W", "E", length=3.0)
net.add_link("A", "E", "G_E", "W", "E", length=3.0)
net.add_link("B", "E", "G_E", "W", "E", length=3.0)
net.add_link("G_E", "A", NONE_CELL, "W", "E", length=3.0)
net.add_link("G_E", "B", NONE_CELL, "W", "E", length=3.0)

net.add_route("WE", ["west", "street", "east"])

demand = [DemandEntry("WE", t, 6.0) for t in range(20)]

params = Parameters(FunDiagKind.DRAKE, vf=1.34, shape=(0.29,), mu=2.0, cfl=0.9)
engine = SimulationEngine(network=net, params=params, demand=demand)
engine.reset()

print("Time(s)  In network  Entered  Exited     A     B")
print("-" * 52)
for state in engine.iterate():
    if state.step % 5 == 0:
        m = engine.get_network_metrics()
        print(f"{m['time']:>6.1f}  {m['total_accumulation']:>10.1f}  "
              f"{m['total_entered']:>7.1f}  {m['total_exited']:>6.1f}  "
              f"{engine.get_cell_accumulation('A'):>4.1f}  "
              f"{engine.get_cell_accumulation('B'):>4.1f}")

result = engine.finish()
print(result)
