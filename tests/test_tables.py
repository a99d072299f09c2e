"""Tests for demand and pedestrian CSV tables."""

import pytest

from anisoped.core.demand import DemandEntry, Pedestrian
from anisoped.core.errors import ConfigurationError
from anisoped.io.tables import (
    read_demand_table,
    read_pedestrian_table,
    write_demand_table,
    write_pedestrian_table,
)


class TestDemandTable:
    def test_camel_case_headers_and_comments(self, tmp_path):
        path = tmp_path / "demand.csv"
        path.write_text(
            "# recorded 2019-05-02\n"
            "routeName, depTime, numPeople\n"
            "WE, 0, 3\n"
            "EW, 2, 1.5\n"
        )
        assert read_demand_table(path) == [
            DemandEntry("WE", 0, 3.0), DemandEntry("EW", 2, 1.5),
        ]

    def test_write_then_read(self, tmp_path):
        path = tmp_path / "demand.csv"
        demand = [DemandEntry("NS", 4, 2.0)]
        write_demand_table(demand, path)
        assert path.read_text().splitlines()[0] == "route,dep_time,size"
        assert read_demand_table(path) == demand

    def test_missing_column(self, tmp_path):
        path = tmp_path / "demand.csv"
        path.write_text("route,dep_time\nWE,0\n")
        with pytest.raises(ConfigurationError, match="size"):
            read_demand_table(path)


class TestPedestrianTable:
    def test_read(self, tmp_path):
        path = tmp_path / "peds.csv"
        path.write_text("routeName,depTime,travelTime\nWE,0.4,9.1\nSN,12.0,7.5\n")
        peds = read_pedestrian_table(path)
        assert peds == [Pedestrian("WE", 0.4, 9.1), Pedestrian("SN", 12.0, 7.5)]

    def test_write(self, tmp_path):
        path = tmp_path / "peds.csv"
        write_pedestrian_table([Pedestrian("WE", 1.0, 2.0)], path)
        assert read_pedestrian_table(path) == [Pedestrian("WE", 1.0, 2.0)]

    def test_route_names_are_strings(self, tmp_path):
        path = tmp_path / "peds.csv"
        path.write_text("route,dep_time,travel_time\n1,0.0,3.0\n")
        assert read_pedestrian_table(path)[0].route == "1"
