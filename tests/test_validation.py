import math

from roofedit.domain.geometry import NormalizedPoint
from roofedit.domain.measurement import (
    Annotation,
    AnnotationType,
    FeatureType,
    LinearFeature,
    LinearFeatureSet,
    Measurement,
    RoofFacet,
)
from roofedit.services.validation import MeasurementValidator, compactness

from conftest import points, square


def validate(measurement):
    return MeasurementValidator().validate(measurement)


def test_clean_measurement_is_valid(two_facet_measurement):
    report = validate(two_facet_measurement)

    assert report.is_valid
    assert report.warnings == ()
    assert report.confidence == 1.0
    assert report.to_json()["isValid"] is True


def test_self_intersecting_facet_is_an_error():
    bowtie = RoofFacet(id="x", boundary=points([(0, 0), (0.5, 0.5), (0.5, 0), (0, 0.5)]), area=10.0)

    report = validate(Measurement(id="m", facets=(bowtie,)))

    assert not report.is_valid
    assert any("self-intersect" in e for e in report.errors)
    assert report.confidence < 1.0


def test_structural_errors():
    facets = (
        square("dup", 0, 0, 0.2, 10.0),
        square("dup", 0.5, 0.5, 0.2, 0.0),
        RoofFacet(id="thin", boundary=points([(0, 0), (1, 1)]), area=1.0),
    )
    report = validate(Measurement(id="m", facets=facets))

    assert "Duplicate facet id dup" in report.errors
    assert any("non-positive area" in e for e in report.errors)
    assert any("at least 3 vertices" in e for e in report.errors)


def test_linear_totals_must_match_lines():
    ridge = LinearFeature(
        id="r1",
        feature_type=FeatureType.RIDGE,
        start=NormalizedPoint(0.1, 0.1),
        end=NormalizedPoint(0.4, 0.1),
        length=20.0,
    )
    features = LinearFeatureSet(ridges=(ridge,), ridge_total=25.0)

    report = validate(Measurement(id="m", linear_features=features))

    assert len(report.errors) == 1
    assert "Ridge total" in report.errors[0]


def test_note_without_text_is_an_error():
    note = Annotation(id="n1", annotation_type=AnnotationType.NOTE, position=NormalizedPoint(0.5, 0.5))
    marker = Annotation(id="m1", annotation_type=AnnotationType.MARKER, position=NormalizedPoint(0.5, 0.5))

    report = validate(Measurement(id="m", annotations=(note, marker)))

    assert len(report.errors) == 1


def test_sliver_facet_only_warns():
    sliver = RoofFacet(id="s", boundary=points([(0, 0), (0.9, 0), (0.9, 0.05), (0, 0.05)]), area=10.0)

    report = validate(Measurement(id="m", facets=(sliver,)))

    assert report.is_valid
    assert any("aspect ratio" in w for w in report.warnings)
    assert any("compactness" in w for w in report.warnings)
    assert report.confidence < 0.9


def test_vertices_outside_image_warn():
    facet = square("f", 0.8, 0.8, 0.4, 10.0)
    report = validate(Measurement(id="m", facets=(facet,)))

    assert report.is_valid
    assert any("outside the image" in w for w in report.warnings)


def test_compactness_of_square():
    assert compactness(1.0, 4.0) == math.pi / 4
