import pytest

from key_index import SortedKeyIndex
from relation_engine import Relation, TempNamer
from relation_types import CompatibilityError, Domain, DomainError, ParseError, SchemaError


class CountingIndex(SortedKeyIndex):
    def __init__(self):
        super().__init__()
        self.lookups = 0

    def lookup(self, key):
        self.lookups += 1
        return super().lookup(key)


@pytest.fixture
def trace():
    return []

@pytest.fixture
def movie(trace):
    rel = Relation.from_strings("movie", "title year studioNo", "String Integer Integer", "title",
                                trace=trace.append)
    rel.insert(("Star_Wars", 1977, 12345))
    rel.insert(("Jaws", 1975, 99999))
    return rel

@pytest.fixture
def studio():
    rel = Relation("studio", ["name", "studioName"], [Domain.INTEGER, Domain.TEXT], ["name"],
                   index_factory=CountingIndex)
    rel.insert((12345, "Fox"))
    rel.insert((99999, "Universal"))
    return rel


# construction

def test_from_strings_traces_ddl(movie, trace):
    assert trace[0] == "DDL> create table movie (title year studioNo)"
    assert movie.attributes == ("title", "year", "studioNo")
    assert movie.domains == (Domain.TEXT, Domain.INTEGER, Domain.INTEGER)
    assert movie.key == ("title",)

def test_construction_checks_metadata():
    with pytest.raises(SchemaError):
        Relation("r", ["a", "b"], ["Integer"], ["a"])
    with pytest.raises(SchemaError):
        Relation("r", ["a", "a"], ["Integer", "Integer"], ["a"])
    with pytest.raises(SchemaError):
        Relation("r", ["a"], ["Integer"], ["b"])
    with pytest.raises(SchemaError):
        Relation("r", ["a"], ["Integer"], [])
    with pytest.raises(SchemaError):
        Relation("r", ["a"], ["Blob"], ["a"])

def test_like_copies_metadata_only(movie):
    empty = Relation.like(movie, "_copy")
    assert empty.name == "movie_copy"
    assert empty.attributes == movie.attributes
    assert empty.key == movie.key
    assert len(empty) == 0


# insert

def test_insert_appends_and_indexes(movie, trace):
    assert movie.insert(("Rocky", 1985, 12345))
    assert movie.tuples[-1] == ("Rocky", 1985, 12345)
    assert movie.lookup("Rocky") == ("Rocky", 1985, 12345)
    assert trace[-1] == "DML> insert into movie values ( ['Rocky', 1985, 12345] )"

def test_insert_rejects_domain_mismatch(movie):
    before = movie.tuples
    assert not movie.insert(("Rocky", "1985", 12345))
    assert not movie.insert(("Rocky", 1985.0, 12345))
    assert not movie.insert(("Rocky", True, 12345))
    assert movie.tuples == before
    assert len(movie.index) == 2
    assert movie.lookup("Rocky") is None

def test_insert_rejects_wrong_arity(movie):
    assert not movie.insert(("Rocky", 1985))
    assert len(movie) == 2

def test_insert_rejects_duplicate_key(movie):
    assert not movie.insert(("Jaws", 2000, 1))
    assert len(movie) == 2
    assert movie.lookup("Jaws") == ("Jaws", 1975, 99999)

def test_lookup_needs_full_key(movie):
    with pytest.raises(SchemaError):
        movie.lookup("Jaws", 1975)

def test_index_iterates_in_key_order(movie):
    movie.insert(("Alien", 1979, 12345))
    assert [k for k, _ in movie.index.items()] == [("Alien",), ("Jaws",), ("Star_Wars",)]


# project

def test_project(movie):
    result = movie.project("title year")
    assert result.attributes == ("title", "year")
    assert result.domains == (Domain.TEXT, Domain.INTEGER)
    assert result.tuples == (("Star_Wars", 1977), ("Jaws", 1975))
    assert result.key == ("title",)
    assert result.lookup("Jaws") == ("Jaws", 1975)

def test_project_reorders_and_keeps_duplicates(movie):
    movie.insert(("Rocky", 1985, 12345))
    result = movie.project(["studioNo"])
    assert result.tuples == ((12345,), (99999,), (12345,))
    assert result.key is None
    assert len(result.index) == 0

    swapped = movie.project("year, title")
    assert swapped.attributes == ("year", "title")
    assert all(len(t) == 2 for t in swapped)

def test_project_unknown_attribute(movie):
    with pytest.raises(SchemaError):
        movie.project("title rating")


# select

def test_select(movie):
    result = movie.select("1976 < year")
    assert result.tuples == (("Star_Wars", 1977, 12345),)
    assert result.attributes == movie.attributes
    assert result.lookup("Star_Wars") == ("Star_Wars", 1977, 12345)

def test_select_keeps_source_order(movie):
    movie.insert(("Rocky", 1985, 12345))
    movie.insert(("Alien", 1979, 12345))
    result = movie.select("studioNo == 12345 & year > 1970")
    assert [t[0] for t in result] == ["Star_Wars", "Rocky", "Alien"]

def test_select_text_literals(movie):
    assert movie.select("title == Jaws").tuples == (("Jaws", 1975, 99999),)
    assert movie.select("title == 'Jaws'").tuples == (("Jaws", 1975, 99999),)
    assert len(movie.select("title != Jaws | year > 2000")) == 1

def test_select_with_fractional_bound_on_integer(movie):
    assert movie.select("year > 1976.5").tuples == (("Star_Wars", 1977, 12345),)
    assert movie.select("1974.5 < year & year < 1975.5").tuples == (("Jaws", 1975, 99999),)

def test_select_empty_condition_keeps_all(movie):
    assert movie.select(None).tuples == movie.tuples
    assert movie.select("  ").tuples == movie.tuples

def test_select_errors(movie):
    with pytest.raises(SchemaError):
        movie.select("rating > 3")
    with pytest.raises(SchemaError):
        movie.select("year == abc")
    with pytest.raises(DomainError):
        movie.select("year == '19x'")
    with pytest.raises(ParseError):
        movie.select("year > 1976 &")
    with pytest.raises(ParseError):
        movie.select("( year > 1976 )")

def test_select_does_not_mutate_source(movie):
    before = movie.tuples
    movie.select("year > 3000")
    assert movie.tuples == before


# union / minus

def test_self_union_and_minus(movie):
    assert movie.union(movie).tuples == movie.tuples
    assert len(movie.minus(movie)) == 0

def test_union_appends_new_tuples(movie):
    other = Relation.like(movie, "2")
    other.insert(("Jaws", 1975, 99999))
    other.insert(("Rocky", 1985, 12345))
    result = movie.union(other)
    assert result.tuples == movie.tuples + (("Rocky", 1985, 12345),)
    assert len(result) <= len(movie) + len(other)

def test_union_only_checks_against_first_operand():
    a = Relation("a", ["x"], ["Integer"])
    b = Relation("b", ["x"], ["Integer"])
    a.insert((1,))
    b.insert((2,)); b.insert((2,))
    assert a.union(b).tuples == ((1,), (2,), (2,))

def test_union_drops_key_that_is_no_longer_unique(movie):
    other = Relation.like(movie, "2")
    other.insert(("Jaws", 2020, 1))
    result = movie.union(other)
    assert len(result) == 3
    assert result.key is None
    assert len(result.index) == 0

def test_minus(movie):
    other = Relation.like(movie, "2")
    other.insert(("Jaws", 1975, 99999))
    other.insert(("Jaws_2", 1978, 99999))
    result = movie.minus(other)
    assert result.tuples == (("Star_Wars", 1977, 12345),)

def test_compatibility_ignores_case_of_names(movie):
    shouting = Relation("MOVIE", ["TITLE", "YEAR", "STUDIONO"], ["string", "int", "long"], ["TITLE"])
    shouting.insert(("Jaws", 1975, 99999))
    assert movie.compatible(shouting)
    assert len(movie.minus(shouting)) == 1

def test_incompatible_set_operations_raise(movie, studio):
    with pytest.raises(CompatibilityError):
        movie.union(studio)
    with pytest.raises(CompatibilityError):
        movie.minus(movie.project("title year"))
    other = Relation("m", ["title", "year", "studioNo"], ["String", "Real", "Integer"], ["title"])
    assert not movie.compatible(other)


# join

def test_equi_join_uses_key_index(movie, studio):
    before = studio.index.lookups
    result = movie.join("studioNo == name", studio)
    assert result.attributes == ("title", "year", "studioNo", "name", "studioName")
    assert result.tuples == (
        ("Star_Wars", 1977, 12345, 12345, "Fox"),
        ("Jaws", 1975, 99999, 99999, "Universal"),
    )
    assert result.key == ("title", "name")
    assert studio.index.lookups - before == len(movie)

def test_join_with_swapped_operands_still_uses_index(movie, studio):
    before = studio.index.lookups
    result = movie.join("s.name == studioNo", studio)
    assert len(result) == 2
    assert studio.index.lookups - before == len(movie)

def test_join_falls_back_to_nested_loop(movie, studio):
    before = studio.index.lookups
    result = movie.join("studioNo < name", studio)
    assert result.tuples == (("Star_Wars", 1977, 12345, 99999, "Universal"),)
    assert studio.index.lookups == before

def test_join_without_condition_is_cross_product(movie, studio):
    result = movie.join(None, studio)
    assert len(result) == len(movie) * len(studio)
    assert result.tuples[0] == ("Star_Wars", 1977, 12345, 12345, "Fox")

def test_self_join_renames_and_qualifies(movie):
    movie.insert(("Rocky", 1985, 12345))
    result = movie.join("studioNo == m.studioNo & title != m.title", movie)
    assert result.attributes == ("title", "year", "studioNo", "m_title", "m_year", "m_studioNo")
    assert [(t[0], t[3]) for t in result] == [("Star_Wars", "Rocky"), ("Rocky", "Star_Wars")]
    assert result.select("m_year > 1980").tuples == (("Star_Wars", 1977, 12345, "Rocky", 1985, 12345),)

def test_equality_join_pairs_appear_exactly_once(movie, studio):
    movie.insert(("Rocky", 1985, 12345))
    result = movie.join("studioNo == name", studio)
    pos_a = result.attributes.index("studioNo"); pos_b = result.attributes.index("name")
    assert all(t[pos_a] == t[pos_b] for t in result)
    expected = [m + s for m in movie for s in studio if m[2] == s[0]]
    assert sorted(result.tuples) == sorted(expected)
    assert len(set(result.tuples)) == len(result)

def test_index_join_follows_composite_key_order():
    a = Relation("a", ["x", "y"], ["Integer", "Integer"], ["x", "y"])
    b = Relation("b", ["p", "q"], ["Integer", "Integer"], ["q", "p"], index_factory=CountingIndex)
    b_loose = Relation("b", ["p", "q"], ["Integer", "Integer"])
    for row in [(1, 2), (2, 1), (3, 4)]:
        a.insert(row)
    for row in [(1, 2), (2, 1), (4, 3)]:
        b.insert(row)
        b_loose.insert(row)
    before = b.index.lookups
    result = a.join("x == p & y == q", b)
    assert b.index.lookups - before == len(a)
    assert result.tuples == a.join("x == p & y == q", b_loose).tuples
    assert result.tuples == ((1, 2, 1, 2), (2, 1, 2, 1))

def test_index_hit_is_checked_against_whole_condition(movie, studio):
    movie.insert(("Rocky", 1985, 99999))
    studio_loose = Relation("studio", ["name", "studioName"], ["Integer", "String"])
    for row in studio:
        studio_loose.insert(row)
    before = studio.index.lookups
    result = movie.join("studioNo == name & year > 1976", studio)
    assert studio.index.lookups - before == len(movie)
    assert result.tuples == movie.join("studioNo == name & year > 1976", studio_loose).tuples
    assert result.tuples == (
        ("Star_Wars", 1977, 12345, 12345, "Fox"),
        ("Rocky", 1985, 99999, 99999, "Universal"),
    )

def test_join_unknown_attribute(movie, studio):
    with pytest.raises(SchemaError):
        movie.join("studio == name", studio)


# naming and tracing

def test_derived_names_come_from_shared_namer(trace):
    namer = TempNamer()
    movie = Relation("movie", ["title"], ["String"], ["title"], namer=namer, trace=trace.append)
    first = movie.select(None)
    second = first.project("title")
    assert (first.name, second.name) == ("movie_0", "movie_0_1")
    assert namer.count == 2
    assert trace == ["RA> movie.select (None)", "RA> movie_0.project (title)"]

def test_derived_names_never_collide():
    namer = TempNamer()
    movie = Relation("movie", ["title"], ["String"], ["title"], namer=namer)
    movie1 = Relation("movie1", ["title"], ["String"], ["title"], namer=namer)
    names = [movie.select(None).name for _ in range(120)]
    names.append(movie.select(None).select(None).name)
    names += [movie1.select(None).name for _ in range(5)]
    assert "movie_112" in names
    assert len(set(names)) == len(names)

def test_every_operator_traces_one_line(movie, studio, trace):
    start = len(trace)
    movie.select("year > 1")
    movie.project("title")
    movie.union(movie)
    movie.minus(movie)
    movie.join("studioNo == name", studio)
    assert trace[start:] == [
        "RA> movie.select (year > 1)",
        "RA> movie.project (title)",
        "RA> movie.union (movie)",
        "RA> movie.minus (movie)",
        "RA> movie.join (studioNo == name, studio)",
    ]


# output

def test_pretty_and_csv(movie):
    text = movie.pretty(show_domains=True)
    assert text.splitlines()[0] == "Relation movie"
    assert "String" in text and "Star_Wars" in text
    assert movie.to_csv().splitlines() == ["title,year,studioNo", "Star_Wars,1977,12345", "Jaws,1975,99999"]
    assert movie.to_dict()["key"] == ["title"]
