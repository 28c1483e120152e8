from sqlalchemy.types import TypeDecorator, TEXT
import json


class JSONEncodedList(TypeDecorator):
    """文字列リスト（タグなど）をJSONテキストとして保存する型"""
    impl = TEXT
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return json.dumps(list(value), ensure_ascii=False)

    def process_result_value(self, value, dialect):
        if value is None:
            return []
        try:
            loaded = json.loads(value)
        except json.JSONDecodeError:
            return []
        return loaded if isinstance(loaded, list) else []
