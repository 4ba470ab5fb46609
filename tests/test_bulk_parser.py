import pytest

from pipelines.bulk_parser import (
    ParserSettings,
    extract_quoted_block,
    is_multi_item_marker,
    is_non_office_line,
    match_area,
    match_date,
    match_direction,
    match_floor,
    match_house_header,
    match_price,
    parse_bulk_text,
)


def lines_to_text(*lines):
    return "\n".join(lines)


def test_match_house_header():
    assert match_house_header("삼익비치타운 216동") == ("삼익비치타운", "216")
    assert match_house_header("대림 e편한세상  0102동") == ("대림 e편한세상", "0102")
    assert match_house_header("216동") is None
    assert match_house_header("삼익비치타운 216동 매물") is None


def test_descriptor_recognizers():
    line = "재건축47평(155㎡), 중/36층남서향"
    assert match_floor(line) == "중"
    assert match_area(line) == ("47", "info-line")
    assert match_direction(line) == "남서향"

    assert match_area("12/15층, 34평") == ("34", "fallback")
    assert match_area("40평대 재건축47평(155㎡), 12/15층남향") == ("47", "info-line")
    assert match_area("12/15층") is None
    assert match_direction("12/15층 남향") is None


def test_price_date_and_marker_recognizers():
    assert match_price("매매 18억") == ("매매", "18억")
    assert match_price("전세 9억 5,000") == ("전세", "9억 5,000")
    assert match_price("월세 500/100") is None
    assert match_price("매매") is None

    assert match_date("확인매물 2026.01.20") == "2026-01-20"
    assert match_date("집주인확인매물 2026.01.19") == "2026-01-19"
    assert match_date("등록 2026.01.05") == "2026-01-05"
    assert match_date("2026.01.05") is None

    assert is_multi_item_marker("중개사 3곳에서")
    assert not is_multi_item_marker("중개사무소")


@pytest.mark.parametrize("line", ["매물 이미지", "관심매물", "중개사 2곳에서", "3/15층", "삼익비치타운 216동", "사진 이미지 보기"])
def test_non_office_lines(line):
    assert is_non_office_line(line)


def test_office_line_is_not_noise():
    assert not is_non_office_line("해운대공인중개사사무소")


def test_extract_quoted_block_single_and_multi_line():
    assert extract_quoted_block(['"급매 올수리"', "다음"], 0) == ("급매 올수리", 0)
    assert extract_quoted_block(["", '"남향', "", "전망", '좋음"', "다음"], 0) == ("남향 전망 좋음", 4)
    assert extract_quoted_block(["확인매물 2026.01.20"], 0) == (None, 0)


def test_extract_quoted_block_stops_at_header():
    lines = ['"급매', "올수리", "삼익비치타운 217동"]
    assert extract_quoted_block(lines, 0) == ("급매 올수리", 1)


def test_single_house(single_house_text):
    result = parse_bulk_text(single_house_text)

    assert result.total_houses == 1
    house = result.houses[0]
    assert house.cluster_name == "삼익비치타운"
    assert house.building_number == "216"
    assert house.unit_number == "ZXX"
    assert house.area == "47"
    assert house.direction == "남서향"
    assert house.key == "삼익비치타운|216|ZXX|47"
    assert house.display == "삼익비치타운 216동 ZXX (47평 남서향) - 1 items"

    [item] = house.items
    assert item.transaction_type == "매매"
    assert item.price == 1_800_000_000
    assert item.remark == "급매 올수리 완료"
    assert item.last_updated_date == "2026-01-20"
    assert item.office == "부산부동산공인중개사사무소"
    assert item.display == "매매 18억 | 부산부동산공인중개사사무소 | 2026-01-20 | 급매 올수리 완료"


def test_preamble_trace(single_house_text):
    result = parse_bulk_text(single_house_text)

    assert result.logs[0] == f"Raw length: {len(single_house_text)}, LF count: 6"
    assert result.logs[1] == "Total lines: 7"
    assert result.logs[2].startswith("First lines: [1] 삼익비치타운 216동 | [2] 매매 18억")


def test_two_consecutive_headers_are_both_skipped():
    result = parse_bulk_text(lines_to_text("삼익비치타운 101동", "삼익비치타운 102동"))

    assert result.houses == []
    skipped = [line for line in result.logs if "Skipped house" in line]
    assert len(skipped) == 2


def test_multi_item_summary_price_is_skipped_once(multi_item_text):
    result = parse_bulk_text(multi_item_text)

    [house] = result.houses
    assert house.unit_number == "YXX"
    assert house.direction == "남향"
    assert [item.price for item in house.items] == [1_750_000_000, 1_850_000_000]
    assert house.items[0].remark == "로얄층 즉시입주"
    assert house.items[0].office == "해운대공인중개사사무소"
    assert house.items[1].last_updated_date == "2026-01-19"
    assert house.items[1].office == "광안리부동산"
    assert sum("Skip summary price" in line for line in result.logs) == 1


def test_multi_item_only_first_range_price_is_skipped():
    text = lines_to_text(
        "삼익비치타운 217동",
        "중개사 2곳에서",
        "매매 17억 ~ 18억",
        "매매 17억 ~ 17억 5,000",
        "확인매물 2026.01.18",
        "해운대공인중개사사무소",
    )
    [house] = parse_bulk_text(text).houses

    assert [item.price for item in house.items] == [1_700_000_000]


def test_items_start_after_fold_marker():
    text = lines_to_text(
        "삼익비치타운 217동",
        "매매 17억 ~ 18억",
        "중개사 2곳에서",
        "매물목록 접기",
        "매매 17억",
        "확인매물 2026.01.18",
        "해운대공인중개사사무소",
    )
    [house] = parse_bulk_text(text).houses

    assert [item.price for item in house.items] == [1_700_000_000]
    assert house.items[0].office == "해운대공인중개사사무소"


def test_single_item_range_price_is_kept():
    text = lines_to_text(
        "삼익비치타운 218동",
        "매매 17억 ~ 18억",
        "확인매물 2026.01.18",
        "해운대공인중개사사무소",
    )
    [house] = parse_bulk_text(text).houses

    assert house.items[0].price == 1_700_000_000


def test_three_line_remark_resumes_after_closing_line():
    text = lines_to_text(
        "삼익비치타운 301동",
        "매매 15억",
        '"남향 탁 트인 전망',
        "확인매물 2025.12.01 기준 시세 반영",
        '즉시 입주 가능"',
        "확인매물 2026.01.21",
        "센텀공인중개사",
    )
    result = parse_bulk_text(text)

    [item] = result.houses[0].items
    assert item.remark == "남향 탁 트인 전망 확인매물 2025.12.01 기준 시세 반영 즉시 입주 가능"
    assert item.last_updated_date == "2026-01-21"
    assert item.office == "센텀공인중개사"
    assert "    Remark captured through line 5" in result.logs


def test_unclosed_remark_stops_at_next_house():
    text = lines_to_text(
        "삼익비치타운 216동",
        "매매 18억",
        '"급매',
        "올수리",
        "삼익비치타운 217동",
        "전세 9억",
        "확인매물 2026.01.20",
        "센텀공인중개사",
    )
    result = parse_bulk_text(text)

    assert [house.building_number for house in result.houses] == ["216", "217"]
    assert result.houses[0].items[0].remark == "급매 올수리"
    lease = result.houses[1].items[0]
    assert lease.transaction_type == "전세"
    assert lease.price == 900_000_000
    assert lease.office == "센텀공인중개사"


def test_office_lookahead_skips_house_header():
    text = lines_to_text(
        "삼익비치타운 216동",
        "매매 18억",
        "확인매물 2026.01.20",
        "삼익비치타운 217동",
        "센텀공인중개사",
    )
    result = parse_bulk_text(text)

    assert [house.building_number for house in result.houses] == ["216"]
    item = result.houses[0].items[0]
    assert item.price == 1_800_000_000
    assert item.office == "센텀공인중개사"
    assert any("Skipped house" in line for line in result.logs)


def test_office_lookahead_skips_noise_lines():
    text = lines_to_text(
        "삼익비치타운 216동",
        "매매 18억",
        "확인매물 2026.01.20",
        "관심매물",
        "12/15층",
        "",
        "센텀공인중개사",
    )
    [item] = parse_bulk_text(text).houses[0].items

    assert item.office == "센텀공인중개사"


def test_office_beyond_lookahead_is_not_captured():
    text = lines_to_text(
        "삼익비치타운 216동",
        "매매 18억",
        "확인매물 2026.01.20",
        "관심매물",
        "매물 이미지",
        "12/15층",
        "",
        "센텀공인중개사",
    )
    [item] = parse_bulk_text(text).houses[0].items

    assert item.office is None


def test_duplicate_items_in_one_house_are_collapsed():
    text = lines_to_text(
        "삼익비치타운 218동",
        "중개사 2곳에서",
        "매매 16억",
        "확인매물 2026.01.20",
        "센텀공인중개사",
        "매매 16억",
        "확인매물 2026.01.19",
        "센텀공인중개사",
    )
    result = parse_bulk_text(text)

    [item] = result.houses[0].items
    assert item.last_updated_date == "2026-01-20"
    assert any("Duplicate item skipped" in line for line in result.logs)


def test_item_without_price_or_office_is_dropped():
    text = lines_to_text(
        "삼익비치타운 216동",
        "매매 협의",
        '"가격 문의"',
    )
    result = parse_bulk_text(text)

    assert result.houses == []
    assert any("Skipped house" in line for line in result.logs)


def test_probe_window_limits_descriptor_search():
    text = lines_to_text(
        "삼익비치타운 216동",
        "매매 18억",
        "매물 이미지",
        "재건축47평(155㎡), 7/15층동향",
        "확인매물 2026.01.20",
        "센텀공인중개사",
    )

    wide = parse_bulk_text(text).houses[0]
    assert wide.unit_number == "70X"
    assert wide.direction == "동향"

    narrow = parse_bulk_text(text, ParserSettings(probe_window=3)).houses[0]
    assert narrow.unit_number is None
    assert narrow.direction is None
    assert narrow.key == "삼익비치타운|216|<null>|47"


def test_first_floor_line_wins_and_info_area_beats_label():
    text = lines_to_text(
        "삼익비치타운 216동",
        "매매 18억",
        "40평대 재건축47평(155㎡), 12/15층남향",
        "3/15층 34평 북향",
        "확인매물 2026.01.20",
        "센텀공인중개사",
    )
    house = parse_bulk_text(text).houses[0]

    assert house.unit_number == "120X"
    assert house.area == "47"
    assert house.direction == "남향"
    assert house.items[0].office == "센텀공인중개사"


def test_default_area_is_configurable():
    text = lines_to_text("삼익비치타운 216동", "매매 18억")
    house = parse_bulk_text(text, ParserSettings(default_area="34")).houses[0]

    assert house.area == "34"


@pytest.mark.parametrize(
    "kwargs",
    [{"default_area": " "}, {"probe_window": 0}, {"office_lookahead": -1}],
)
def test_invalid_settings_raise(kwargs):
    with pytest.raises(ValueError):
        ParserSettings(**kwargs)


def test_batch_keeps_house_order(batch_text):
    result = parse_bulk_text(batch_text)

    assert [house.building_number for house in result.houses] == ["216", "217"]
    assert result.total_items == 3


def test_parse_is_deterministic(batch_text):
    first = parse_bulk_text(batch_text)
    second = parse_bulk_text(batch_text)

    assert first.logs == second.logs
    assert [house.key for house in first.houses] == [house.key for house in second.houses]


@pytest.mark.parametrize(
    "text",
    [
        None,
        "",
        "   \n\n",
        '"',
        '삼익비치타운 216동\n매매 18억\n"',
        "매매 18억\n확인매물 2026.01.20",
        "삼익비치타운 216동\n" + "\n" * 40 + "매매 \n전세 abc",
        '삼익비치타운 216동\n"\n"\n"\n매매 1억\n"',
    ],
)
def test_any_input_terminates_with_retained_items_only(text):
    result = parse_bulk_text(text)

    for house in result.houses:
        assert house.items
        for item in house.items:
            assert item.price is not None or item.office
