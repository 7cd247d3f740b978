from app.utils.response import success_response, error_response


def test_success_response_with_data():
    result = success_response(data={"key": "value"})
    assert result == {"status": "success", "data": {"key": "value"}, "message": None}


def test_success_response_with_message():
    result = success_response(data=None, message="히스토리가 삭제되었습니다")
    assert result == {"status": "success", "data": None, "message": "히스토리가 삭제되었습니다"}


def test_error_response():
    result = error_response("잘못된 요청입니다")
    assert result == {"status": "error", "data": None, "message": "잘못된 요청입니다"}


def test_error_response_with_data():
    result = error_response("오류", data={"field": "category"})
    assert result == {"status": "error", "data": {"field": "category"}, "message": "오류"}
