from app.judgemyjpeg.modules.photos.moderation import (
    dimensions_acceptable,
    has_suspicious_equipment,
    moderate_image,
    moderate_text,
)


def test_clean_filename_passes():
    result = moderate_image("coucher_de_soleil.jpg", None, 1920, 1080)
    assert result.flagged is False
    assert result.reason is None


def test_banned_keyword_in_filename():
    result = moderate_image("photo-cocaïne-soiree.jpg")
    assert result.flagged is True
    assert result.categories == ("illicit",)
    assert "cocaïne" in result.reason


def test_keywords_match_whole_words_only():
    # "nuage" contains "nu", "sangria" contains "sang"
    assert moderate_text("nuage_sangria.jpg").flagged is False
    assert moderate_text("plage_nu.jpg").flagged is True


def test_camel_case_and_separators_split():
    assert moderate_text("monSexePhoto.png").flagged is True
    assert moderate_text("IMG.2024.nazi.jpg").categories == ("hate",)


def test_multiple_categories_reported():
    result = moderate_text("violence drogue")
    assert result.flagged is True
    assert set(result.categories) == {"violence", "illicit"}


def test_suspicious_equipment_in_exif():
    assert has_suspicious_equipment({"make": "Acme", "model": "Hidden Camera 3000"}) is True
    assert has_suspicious_equipment({"make": "Canon", "model": "EOS R6"}) is False
    assert has_suspicious_equipment(None) is False
    result = moderate_image("photo.jpg", {"make": "Spy Camera Ltd"}, 800, 600)
    assert result.flagged is True
    assert "surveillance" in result.reason


def test_dimension_rules():
    assert dimensions_acceptable(100, 100) is True
    assert dimensions_acceptable(99, 500) is False
    assert dimensions_acceptable(2000, 200) is True
    assert dimensions_acceptable(2100, 200) is False


def test_dimensions_checked_last():
    result = moderate_image("photo.jpg", None, 50, 50)
    assert result.flagged is True
    assert result.reason == "Dimensions d'image suspectes"
    # unknown dimensions are not held against the upload
    assert moderate_image("photo.jpg", None, None, None).flagged is False


def test_to_dict():
    data = moderate_text("sexe").to_dict()
    assert data["flagged"] is True
    assert data["categories"] == ["sexual"]
