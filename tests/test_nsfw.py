from zbplugins.nsfw import Classification, auto_judge, judge


def test_judge_neutral():
    assert judge(Classification(neutral=0.9)) == "普通哦"


def test_judge_drawn_with_flags():
    picture = Classification(drawings=0.1, hentai=0.5, neutral=0.1, porn=0.4, sexy=0.1)
    assert judge(picture) == "二次元 hentai porn"


def test_judge_real_when_neutral_at_threshold():
    picture = Classification(drawings=0.1, neutral=0.3, sexy=0.6)
    assert judge(picture) == "三次元 hso"


def test_auto_judge_neutral_is_silent():
    assert auto_judge(Classification(neutral=0.5, porn=0.9)) is None


def test_auto_judge_without_flags_is_silent():
    assert auto_judge(Classification(drawings=0.9, neutral=0.1)) is None


def test_auto_judge_real_sexy():
    picture = Classification(drawings=0.1, neutral=0.1, sexy=0.5)
    assert auto_judge(picture) == "三次元 hso"


def test_auto_judge_matches_judge_for_drawings():
    picture = Classification(drawings=0.8, hentai=0.7, neutral=0.0)
    assert auto_judge(picture) == judge(picture)