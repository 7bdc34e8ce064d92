"""Unit tests for results aggregation."""

import pytest

from app.services.aggregation import aggregate_results, build_aggregate
from app.services.scope import Scope


def submission(submission_id, station_id, registered=500, cast=400, valid=380, rejected=20):
    return {
        "submission_id": submission_id,
        "polling_station_id": station_id,
        "registered_voters": registered,
        "total_votes_cast": cast,
        "valid_votes": valid,
        "rejected_votes": rejected,
    }


def vote(submission_id, station_id, name, votes, party=None):
    return {
        "submission_id": submission_id,
        "polling_station_id": station_id,
        "candidate_name": name,
        "party_name": party,
        "votes": votes,
    }


class TestBuildAggregate:
    """Test the pure aggregation step."""

    def test_single_station_example(self):
        aggregate = build_aggregate(
            {"total_stations": 1, "registered_voters": 500},
            [submission(1, 10)],
            [vote(1, 10, "X", 200, "Party X"), vote(1, 10, "Y", 180, "Party Y")],
        )

        assert aggregate["results"] == [
            {
                "candidate_name": "X",
                "party_name": "Party X",
                "total_votes": 200,
                "percentage": 52.63,
                "polling_stations_count": 1,
            },
            {
                "candidate_name": "Y",
                "party_name": "Party Y",
                "total_votes": 180,
                "percentage": 47.37,
                "polling_stations_count": 1,
            },
        ]
        summary = aggregate["summary"]
        assert summary["total_votes_cast"] == 400
        assert summary["valid_votes"] == 380
        assert summary["rejected_votes"] == 20
        assert summary["turnout_percentage"] == 80.0
        assert summary["reporting_percentage"] == 100.0

    def test_reporting_percentage_uses_area_stations(self):
        submissions = [submission(i, 10 + i) for i in range(1, 4)]
        votes = [vote(i, 10 + i, "X", 380) for i in range(1, 4)]

        summary = build_aggregate(
            {"total_stations": 10, "registered_voters": 5000}, submissions, votes
        )["summary"]

        assert summary["stations_reported"] == 3
        assert summary["total_stations"] == 10
        assert summary["reporting_percentage"] == 30.0
        assert summary["registered_voters"] == 5000
        assert summary["reporting_registered_voters"] == 1500

    def test_nothing_reported(self):
        aggregate = build_aggregate({"total_stations": 10, "registered_voters": 5000}, [], [])

        assert aggregate["results"] == []
        assert aggregate["summary"] == {
            "total_votes_cast": 0,
            "valid_votes": 0,
            "rejected_votes": 0,
            "registered_voters": 5000,
            "reporting_registered_voters": 0,
            "turnout_percentage": 0.0,
            "total_stations": 10,
            "stations_reported": 0,
            "reporting_percentage": 0.0,
        }

    def test_empty_area(self):
        summary = build_aggregate({}, [], [])["summary"]
        assert summary["total_stations"] == 0
        assert summary["reporting_percentage"] == 0.0

    def test_ties_keep_first_seen_order(self):
        aggregate = build_aggregate(
            {"total_stations": 1, "registered_voters": 200},
            [submission(1, 10, registered=200, cast=100, valid=100, rejected=0)],
            [vote(1, 10, "B", 50), vote(1, 10, "A", 50)],
        )
        assert [r["candidate_name"] for r in aggregate["results"]] == ["B", "A"]

    def test_groups_across_stations(self):
        aggregate = build_aggregate(
            {"total_stations": 2, "registered_voters": 1000},
            [submission(1, 10), submission(2, 11)],
            [
                vote(1, 10, "X", 200, "Party X"),
                vote(1, 10, "Y", 180, "Party Y"),
                vote(2, 11, "X", 100, "Independent"),
                vote(2, 11, "Y", 280, "Party Y"),
            ],
        )
        x, y = sorted(aggregate["results"], key=lambda r: r["candidate_name"])
        assert x["total_votes"] == 300
        assert x["party_name"] == "Party X"
        assert x["polling_stations_count"] == 2
        assert y["total_votes"] == 460
        assert aggregate["results"][0]["candidate_name"] == "Y"
        assert aggregate["summary"]["valid_votes"] == 760

    def test_submission_totals_counted_once(self):
        aggregate = build_aggregate(
            {"total_stations": 1, "registered_voters": 500},
            [submission(1, 10), submission(1, 10)],
            [vote(1, 10, "X", 200), vote(1, 10, "Y", 180)],
        )
        assert aggregate["summary"]["total_votes_cast"] == 400
        assert aggregate["summary"]["stations_reported"] == 1

    def test_votes_of_uncounted_submissions_ignored(self):
        aggregate = build_aggregate(
            {"total_stations": 1, "registered_voters": 500},
            [submission(1, 10)],
            [vote(1, 10, "X", 380), vote(99, 10, "Y", 1000)],
        )
        assert [r["candidate_name"] for r in aggregate["results"]] == ["X"]

    def test_percentages_sum_to_about_100(self):
        aggregate = build_aggregate(
            {"total_stations": 1, "registered_voters": 500},
            [submission(1, 10, cast=300, valid=300, rejected=0)],
            [vote(1, 10, "A", 100), vote(1, 10, "B", 100), vote(1, 10, "C", 100)],
        )
        total = sum(r["percentage"] for r in aggregate["results"])
        assert total == pytest.approx(100, abs=0.05)


class TestAggregateResults:
    """Test the database-backed aggregation."""

    @pytest.mark.asyncio
    async def test_constituency_scope_bounds_every_query(self, mock_conn):
        mock_conn.fetchrow.return_value = {"total_stations": 10, "registered_voters": 5000}
        mock_conn.fetch.side_effect = [
            [submission(1, 10)],
            [vote(1, 10, "X", 200), vote(1, 10, "Y", 180)],
        ]

        aggregate = await aggregate_results(mock_conn, "mp", Scope(constituency_id=42))

        area_sql, area_param = mock_conn.fetchrow.call_args.args
        assert "ps.constituency_id = $1" in area_sql
        assert area_param == 42

        for call in mock_conn.fetch.call_args_list:
            sql, position, location = call.args
            assert "ps.constituency_id = $2" in sql
            assert "s.status = 'verified'" in sql
            assert "s.submission_type = 'primary'" in sql
            assert position == "mp"
            assert location == 42

        mock_conn.transaction.assert_called_once_with(
            isolation="repeatable_read", readonly=True
        )

        assert aggregate["position"] == "mp"
        assert aggregate["level"] == "constituency"
        assert aggregate["location_id"] == 42
        assert aggregate["summary"]["reporting_percentage"] == 10.0
        assert aggregate["results"][0]["percentage"] == 52.63

    @pytest.mark.asyncio
    async def test_national_scope_has_no_location_parameter(self, mock_conn):
        mock_conn.fetchrow.return_value = {"total_stations": 0, "registered_voters": 0}

        aggregate = await aggregate_results(mock_conn, "president", Scope.national())

        assert mock_conn.fetchrow.call_args.args[1:] == ()
        assert mock_conn.fetch.call_args.args[1:] == ("president",)
        assert aggregate["level"] == "national"
        assert aggregate["results"] == []

    @pytest.mark.asyncio
    async def test_deny_scope_matches_nothing(self, mock_conn):
        mock_conn.fetchrow.return_value = {"total_stations": 0, "registered_voters": 0}

        aggregate = await aggregate_results(mock_conn, "mca", Scope.deny())

        assert "WHERE FALSE" in mock_conn.fetchrow.call_args.args[0]
        assert aggregate["summary"]["stations_reported"] == 0
