"""Lab catalogue: the closed set of labs and the static tables keyed by them.

Adding a lab means adding an enum member and one row to each table below.
"""
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType


class LabType(str, Enum):
    BOOKSHELF = "bookshelf"
    FRIDGE = "fridge"
    CLOSET = "closet"
    WHISKY = "whisky"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.strip().lower()
            alias = _LAB_ALIASES.get(key, key)
            for member in cls:
                if member.value == alias:
                    return member
        return None


_LAB_ALIASES = MappingProxyType({
    "library": "bookshelf",
    "whiskey": "whisky",
})


@dataclass(frozen=True)
class LabInfo:
    icon: str
    title: str
    description: str


SYSTEM_INSTRUCTION = (
    "You are a helpful home organization and lifestyle assistant. You analyze everyday "
    "household items (books, refrigerator contents, closets, collections) for educational "
    "purposes to help users improve their organization, meal planning, and lifestyle. "
    "All images are from normal domestic settings and are used constructively to provide "
    "practical advice."
)

LAB_PROMPTS = MappingProxyType({
    LabType.BOOKSHELF: """\
이 책장 사진들을 자세히 분석해서 다음 내용을 포함해 작성해주세요:

1. **독서 취향 분석**: 어떤 장르와 주제를 선호하는지 구체적으로
2. **성격 및 관심사 추론**: 책 선택을 통해 보이는 성향과 가치관
3. **추천 도서**: 이 사람이 좋아할 만한 책 5권 추천 (제목과 이유)
4. **독서 스타일**: 독서 습관과 학습 방식에 대한 인사이트

구체적이고 실용적인 분석을 부탁드립니다.""",
    LabType.FRIDGE: """\
당신은 가정용 냉장고 정리 전문가입니다. 이 일반 가정의 냉장고 사진들을 분석해주세요.

**참고**: 이 사진들은 일상적인 식재료 보관 상태를 보여주는 것으로, 교육 및 생활 개선 목적입니다.

다음 내용을 포함해 작성해주세요:

1. **보유 식재료 목록**: 현재 냉장고에 있는 주요 재료들 나열
   - 야채류, 과일류, 육류, 해산물, 유제품, 조미료 등을 카테고리별로 정리
2. **식습관 및 라이프스타일 분석**: 식재료로 보이는 생활 패턴과 건강 관심도
3. **추천 레시피 3가지**: 필요한 재료, 간단한 조리법, 예상 조리시간 포함
4. **부족한 재료 추천**: 더 다양한 요리를 위해 구매하면 좋을 식재료 5가지
5. **냉장고 정리 팁**: 식재료 보관 방법과 유통기한 관리 조언

실용적이고 바로 적용 가능한 내용으로 친절하게 작성해주세요.""",
    LabType.CLOSET: """\
이 옷장 사진들을 자세히 분석해서 다음 내용을 포함해 작성해주세요:

1. **패션 스타일 분석**: 주요 아이템과 색상 선호도
2. **라이프스타일 추론**: 옷차림으로 보이는 직업, 활동, 취향
3. **스타일링 추천 3가지**: 지금 있는 옷으로 만들 수 있는 상황별(출근, 데이트, 캐주얼) 코디
4. **쇼핑 리스트**: 옷장을 업그레이드할 추천 아이템 5가지

구체적이고 실용적인 패션 조언을 부탁드립니다.""",
    LabType.WHISKY: """\
이 위스키 컬렉션 사진들을 자세히 분석해서 다음 내용을 포함해 작성해주세요:

1. **컬렉션 현황**: 보유 위스키 브랜드와 종류 파악
2. **취향 분석**: 선호하는 위스키 스타일(스카치, 버번, 일본 등)과 가격대
3. **추천 위스키 5병**: 이 컬렉션에 추가하면 좋을 위스키, 각 추천마다 이유와 예상 가격대 포함
4. **페어링 추천**: 위스키와 어울리는 안주나 음식 제안

전문적이고 실용적인 분석을 부탁드립니다.""",
})

LAB_INFO = MappingProxyType({
    LabType.BOOKSHELF: LabInfo("📚", "그 남자의 서재", "책장을 분석하여 당신의 지적 취향을 파악합니다"),
    LabType.FRIDGE: LabInfo("🧊", "그 남자의 냉장고", "냉장고 속 식재료로 당신의 라이프스타일을 분석합니다"),
    LabType.CLOSET: LabInfo("👔", "그 남자의 옷장", "옷장을 통해 당신의 패션 감각과 성향을 파악합니다"),
    LabType.WHISKY: LabInfo("🥃", "그 남자의 위스키", "위스키 컬렉션으로 당신의 취향과 품격을 분석합니다"),
})

SUMMARY_HEADING = "## 📋 종합 분석"
ANALYSIS_SEPARATOR = "\n\n---\n\n"

_PER_IMAGE_HINT = """

**참고**: 전체 {total}장 중 {index}번째 사진입니다. 이 사진에 보이는 내용만 분석해주세요."""

_SUMMARY_PROMPT = """\
아래는 같은 {title} 사진 {total}장을 한 장씩 분석한 결과입니다.

{analyses}

위 분석들을 종합해서 전체적인 취향, 특징, 그리고 가장 중요한 추천 사항을 간결하게 정리해주세요.
중복되는 내용은 합치고, 사진들 사이의 공통점과 차이점을 짚어주세요."""


def resolve_lab(value: "str | LabType") -> LabType:
    """Resolve a raw category string (aliases included) to its lab.

    Raises ValueError for anything outside the catalogue.
    """
    return LabType(value)


def per_image_prompt(lab: LabType, index: int, total: int) -> str:
    """Lab prompt plus an 'image i of n' hint; ``index`` is 1-based."""
    return LAB_PROMPTS[lab] + _PER_IMAGE_HINT.format(index=index, total=total)


def summary_prompt(lab: LabType, analyses: list[str]) -> str:
    numbered = "\n\n".join(
        f"### 사진 {i}\n{text}" for i, text in enumerate(analyses, start=1)
    )
    return _SUMMARY_PROMPT.format(
        title=LAB_INFO[lab].title, total=len(analyses), analyses=numbered,
    )
