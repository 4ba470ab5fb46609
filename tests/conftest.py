import pytest

from store import HouseStore


SINGLE_HOUSE_TEXT = "\n".join(
    [
        "삼익비치타운 216동",
        "매매 18억",
        "재건축47평(155㎡), 고/12층남서향",
        "매물 이미지",
        '"급매 올수리 완료"',
        "확인매물 2026.01.20",
        "부산부동산공인중개사사무소",
    ]
)

MULTI_ITEM_TEXT = "\n".join(
    [
        "삼익비치타운 217동",
        "매매 17억 ~ 18억 5,000",
        "재건축47평(155㎡), 중/15층남향",
        "중개사 3곳에서",
        "매매 17억 5,000",
        '"로얄층 즉시입주"',
        "확인매물 2026.01.18",
        "해운대공인중개사사무소",
        "매매 18억 5,000",
        "집주인확인매물 2026.01.19",
        "광안리부동산",
    ]
)


@pytest.fixture
def single_house_text():
    return SINGLE_HOUSE_TEXT


@pytest.fixture
def multi_item_text():
    return MULTI_ITEM_TEXT


@pytest.fixture
def batch_text():
    return SINGLE_HOUSE_TEXT + "\r\n" + MULTI_ITEM_TEXT


@pytest.fixture
def store(tmp_path):
    return HouseStore(tmp_path / "store")
