from __future__ import annotations

import logging
import textwrap
from datetime import date
from typing import NamedTuple, Optional

from app.models.equipment_request import ApprovalStatus, RequestRecord, SignatureType
from app.services.signature_image import PdfImage, SignatureImageError, signature_image


logger = logging.getLogger(__name__)

PAGE_WIDTH = 595
PAGE_HEIGHT = 842
MARGIN = 40
FOOTER_TEXT = "Equipment Request System"
# Helvetica with WinAnsiEncoding covers cp1252.
TEXT_ENCODING = "cp1252"

# x offsets of the item table columns: No., description, quantity, purpose, required date
ITEM_COLUMNS = (MARGIN, 70, 260, 310, 470)
DESCRIPTION_WIDTH = 34
PURPOSE_WIDTH = 28

SIGNATURE_MAX_WIDTH = 150
SIGNATURE_MAX_HEIGHT = 50


class PdfLine(NamedTuple):
    cells: tuple[tuple[int, str], ...]
    font: str = "F1"
    size: int = 10
    height: int = 14
    # (x, XObject name, width, height)
    image: Optional[tuple[int, str, int, int]] = None


def _text(value: str, font: str = "F1", size: int = 10, height: int = 14, x: int = MARGIN) -> PdfLine:
    return PdfLine(cells=((x, value),), font=font, size=size, height=height)


def _blank(height: int = 8) -> PdfLine:
    return PdfLine(cells=(), height=height)


def format_date(value: Optional[str], long: bool = True) -> str:
    if not value:
        return "-"
    try:
        parsed = date.fromisoformat(value[:10])
    except ValueError:
        return value
    if long:
        return f"{parsed.strftime('%B')} {parsed.day}, {parsed.year}"
    return f"{parsed.strftime('%b')} {parsed.day}, {parsed.year}"


def _signature_text(signature: Optional[str], signature_type: Optional[SignatureType]) -> str:
    if not signature:
        return "-"
    if signature_type == SignatureType.DRAWN:
        return "[Drawn signature on file]"
    return signature


class PdfService:
    def _sanitize(self, text: str) -> str:
        safe = (text or "").replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        return safe.encode(TEXT_ENCODING, "replace").decode(TEXT_ENCODING)

    def _paginate(self, lines: list[PdfLine]) -> list[list[PdfLine]]:
        usable = PAGE_HEIGHT - 2 * MARGIN - 20
        pages: list[list[PdfLine]] = [[]]
        used = 0
        for line in lines:
            if used + line.height > usable and pages[-1]:
                pages.append([])
                used = 0
            pages[-1].append(line)
            used += line.height
        return pages

    def _build_content_stream(self, lines: list[PdfLine], page_no: int, page_count: int) -> bytes:
        commands: list[str] = []
        y = PAGE_HEIGHT - MARGIN
        for line in lines:
            for x, value in line.cells:
                commands.append(f"BT /{line.font} {line.size} Tf {x} {y} Td ({self._sanitize(value)}) Tj ET")
            if line.image is not None:
                x, name, width, height = line.image
                commands.append(f"q {width} 0 0 {height} {x} {y - height + 4} cm /{name} Do Q")
            y -= line.height

        footer = f"{FOOTER_TEXT} - Page {page_no} of {page_count}"
        commands.append(f"BT /F1 8 Tf {MARGIN} 24 Td ({self._sanitize(footer)}) Tj ET")
        return "\n".join(commands).encode(TEXT_ENCODING, "replace")

    def _signature_lines(
        self,
        signature: Optional[str],
        signature_type: Optional[SignatureType],
        images: list[PdfImage],
        size: int = 10,
    ) -> list[PdfLine]:
        if signature and signature_type == SignatureType.DRAWN:
            try:
                image = signature_image(signature)
            except SignatureImageError as exc:
                logger.warning("Drawn signature could not be embedded: %s", exc)
            else:
                images.append(image)
                scale = min(SIGNATURE_MAX_WIDTH / image.width, SIGNATURE_MAX_HEIGHT / image.height, 1.0)
                width = max(1, round(image.width * scale))
                height = max(1, round(image.height * scale))
                return [
                    _text("Signature:", size=size),
                    PdfLine(cells=(), height=height + 10, image=(MARGIN, f"Im{len(images)}", width, height)),
                ]
        return [_text(f"Signature: {_signature_text(signature, signature_type)}", size=size)]

    def _item_lines(self, record: RequestRecord) -> list[PdfLine]:
        header = PdfLine(
            cells=tuple(
                zip(ITEM_COLUMNS, ("No.", "Equipment Description", "Quantity", "Purpose / Use", "Required Date"))
            ),
            font="F2",
            height=16,
        )
        lines = [header]
        for index, item in enumerate(record.equipment_items, start=1):
            description = textwrap.wrap(item.name, DESCRIPTION_WIDTH) or ["-"]
            purpose = textwrap.wrap(item.purpose or "-", PURPOSE_WIDTH) or ["-"]
            for row in range(max(len(description), len(purpose))):
                cells: list[tuple[int, str]] = []
                if row == 0:
                    cells.append((ITEM_COLUMNS[0], str(index)))
                    cells.append((ITEM_COLUMNS[2], item.quantity or "-"))
                    cells.append((ITEM_COLUMNS[4], format_date(item.required_date, long=False)))
                if row < len(description):
                    cells.append((ITEM_COLUMNS[1], description[row]))
                if row < len(purpose):
                    cells.append((ITEM_COLUMNS[3], purpose[row]))
                lines.append(PdfLine(cells=tuple(sorted(cells))))
            lines.append(_blank(4))
        return lines

    def _approval_lines(self, record: RequestRecord, images: list[PdfImage]) -> list[PdfLine]:
        decision = "APPROVED" if record.approval_status == ApprovalStatus.APPROVED else "REJECTED"
        lines = [
            _text("APPROVAL", font="F2", size=12, height=18),
            _text(f"Decision: {decision}"),
            _text(f"Approved By (Site Engineer / Manager): {record.approved_by or '-'}"),
            _text(f"Date: {format_date(record.approval_date)}"),
        ]
        lines.extend(self._signature_lines(record.approval_signature, record.approval_signature_type, images))
        if record.approval_comments:
            wrapped = textwrap.wrap(record.approval_comments, 90)
            lines.append(_text(f"Comments: {wrapped[0]}"))
            lines.extend(_text(part, x=MARGIN + 56) for part in wrapped[1:])
        return lines

    def _request_lines(self, record: RequestRecord, include_decision: bool, images: list[PdfImage]) -> list[PdfLine]:
        lines = [
            _text("EQUIPMENT REQUEST FORM", font="F2", size=18, height=26),
            _text(f"Request ID: {record.request_id}", font="F2", size=11, height=18),
        ]

        general = [
            ("Company Name", record.company_name),
            ("Project / Site Name", record.project_site_name),
            ("Department", record.department),
        ]
        for label, value in general:
            if value:
                lines.append(_text(f"{label}: {value}", size=11))
        if record.date_of_request:
            lines.append(_text(f"Date of Request: {format_date(record.date_of_request)}", size=11))

        lines.append(_blank())
        lines.append(_text("REQUEST DETAILS", font="F2", size=14, height=20))
        lines.extend(self._item_lines(record))

        lines.append(_blank())
        lines.append(_text("Requested By:", font="F2", size=12, height=18))
        lines.append(_text(f"Name: {record.requester_name}", size=11))
        if record.requester_position:
            lines.append(_text(f"Position: {record.requester_position}", size=11))
        lines.extend(self._signature_lines(record.signature, record.signature_type, images, size=11))
        if record.requester_date:
            lines.append(_text(f"Date: {format_date(record.requester_date)}", size=11))

        if include_decision:
            lines.append(_blank(12))
            lines.extend(self._approval_lines(record, images))
        return lines

    def _image_objects(self, image: PdfImage, obj_id: int) -> list[tuple[int, bytes]]:
        objects: list[tuple[int, bytes]] = []
        smask = ""
        if image.alpha is not None:
            mask_id = obj_id + 1
            smask = f" /SMask {mask_id} 0 R"
            objects.append((mask_id, self._image_stream(image.width, image.height, "/DeviceGray", image.alpha, "")))
        objects.insert(0, (obj_id, self._image_stream(image.width, image.height, image.color_space, image.data, smask)))
        return objects

    def _image_stream(self, width: int, height: int, color_space: str, data: bytes, extra: str) -> bytes:
        header = (
            f"<< /Type /XObject /Subtype /Image /Width {width} /Height {height} "
            f"/ColorSpace {color_space} /BitsPerComponent 8 /Filter /FlateDecode{extra} "
            f"/Length {len(data)} >>\nstream\n"
        )
        return header.encode("latin-1") + data + b"\nendstream"

    def render_request_pdf(self, record: RequestRecord, include_decision: Optional[bool] = None) -> bytes:
        """Render ``record`` as a PDF document.

        The output depends only on the record, so rendering the same record
        twice yields identical bytes. The approval block is included when the
        record carries a decision unless ``include_decision`` says otherwise.
        Drawn signatures are embedded as image XObjects.
        """
        if include_decision is None:
            include_decision = record.is_decided
        images: list[PdfImage] = []
        lines = self._request_lines(record, include_decision and record.approved_by is not None, images)
        pages = self._paginate(lines)

        objects: list[tuple[int, bytes]] = []

        # 1: Catalog
        objects.append((1, b"<< /Type /Catalog /Pages 2 0 R >>"))

        # 2: Pages root
        kids = " ".join(f"{5 + idx * 2} 0 R" for idx in range(len(pages)))
        objects.append((2, f"<< /Type /Pages /Count {len(pages)} /Kids [{kids}] >>".encode("latin-1")))

        # 3, 4: Fonts
        objects.append((3, b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>"))
        objects.append((4, b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica-Bold /Encoding /WinAnsiEncoding >>"))

        # Image XObjects follow the page objects.
        next_id = 5 + 2 * len(pages)
        xobject_refs: list[str] = []
        for index, image in enumerate(images, start=1):
            image_objects = self._image_objects(image, next_id)
            objects.extend(image_objects)
            xobject_refs.append(f"/Im{index} {next_id} 0 R")
            next_id += len(image_objects)
        total_objects = next_id - 1

        resources = "/Font << /F1 3 0 R /F2 4 0 R >>"
        if xobject_refs:
            resources += f" /XObject << {' '.join(xobject_refs)} >>"

        for idx, page_lines in enumerate(pages):
            page_obj_id = 5 + idx * 2
            content_obj_id = 6 + idx * 2
            page_obj = (
                f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 {PAGE_WIDTH} {PAGE_HEIGHT}] "
                f"/Resources << {resources} >> /Contents {content_obj_id} 0 R >>"
            ).encode("latin-1")
            objects.append((page_obj_id, page_obj))

            stream = self._build_content_stream(page_lines, idx + 1, len(pages))
            content_obj = (
                f"<< /Length {len(stream)} >>\nstream\n".encode("latin-1")
                + stream
                + b"\nendstream"
            )
            objects.append((content_obj_id, content_obj))

        objects = sorted(objects, key=lambda x: x[0])

        out = bytearray()
        out.extend(b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n")
        offsets = [0] * (total_objects + 1)

        for obj_id, obj_content in objects:
            offsets[obj_id] = len(out)
            out.extend(f"{obj_id} 0 obj\n".encode("latin-1"))
            out.extend(obj_content)
            out.extend(b"\nendobj\n")

        xref_start = len(out)
        out.extend(f"xref\n0 {total_objects + 1}\n".encode("latin-1"))
        out.extend(b"0000000000 65535 f \n")
        for obj_id in range(1, total_objects + 1):
            out.extend(f"{offsets[obj_id]:010} 00000 n \n".encode("latin-1"))

        trailer = (
            f"trailer\n<< /Size {total_objects + 1} /Root 1 0 R >>\n"
            f"startxref\n{xref_start}\n%%EOF\n"
        )
        out.extend(trailer.encode("latin-1"))
        return bytes(out)


pdf_service = PdfService()
