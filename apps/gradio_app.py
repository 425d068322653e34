import io
import gradio as gr
import pandas as pd
import logging
from PIL import Image
from typing import List, Dict, Any, Optional, Tuple
from dotenv import load_dotenv

from packages.ai.client import AIServiceError, CredentialError
from packages.assistant.chat import CatalogAssistant
from packages.catalog.importer import import_workbook
from packages.catalog.schemas import PartColor, PartForm, PartModel, PartRecord
from packages.catalog.service import CatalogService, PartNotFound, filter_parts
from packages.recognition.imaging import pil_to_jpeg
from packages.recognition.matcher import SimilarityMatcher, resolve_matches
from packages.settings import get_settings
from packages.storage.db import StorageError
from packages.storage.images import decode_data_url, is_data_url, to_data_url

load_dotenv()
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CATALOG_HEADERS = ["Part Number", "Part Name", "Color", "Workstation", "Models", "Photos", "ID"]
NEW_PART = "__new__"


def parts_table(parts: List[PartRecord]) -> pd.DataFrame:
    rows = [
        [p.part_number, p.part_name, p.color.value, p.workstation,
         ", ".join(m.value for m in p.models), len(p.image_urls), p.id]
        for p in parts
    ]
    return pd.DataFrame(rows, columns=CATALOG_HEADERS)


def angle_previews(angles: List[str]) -> List[Image.Image]:
    return [Image.open(io.BytesIO(decode_data_url(a)[1])) for a in angles]


def part_choices(parts: List[PartRecord]) -> List[Tuple[str, str]]:
    return [(f"{p.part_number} - {p.part_name}", p.id) for p in parts]


def matches_markdown(detected: str, matches) -> str:
    lines = ["### AI diagnosis", detected or "", "", "### Similar parts"]
    if not matches:
        lines.append("_No similar part found._")
    for m in matches:
        badge = "**HIGH CONFIDENCE**" if m.is_high_confidence else ""
        lines.append(f"- **{m.part.part_name}** #{m.part.part_number} - {m.score:.0f}% {badge}")
        lines.append(f"  - {m.part.color.value} | WS: {m.part.workstation} | {', '.join(x.value for x in m.part.models)}")
        lines.append(f"  - _\"{m.reason}\"_")
    return "\n".join(lines)


class AIdentifyGradioApp:
    def __init__(self, service: Optional[CatalogService] = None, ai_client=None):
        self.service = service or CatalogService()
        self.ai_client = ai_client
        self.parts: List[PartRecord] = []

    # Catalog

    def load_data(self) -> List[PartRecord]:
        try:
            self.parts = self.service.list_parts()
        except StorageError as e:
            logger.error(f"Error loading data: {e}")
            gr.Warning(f"Database error: {e}")
        return self.parts

    def refresh(self, search_term: str = ""):
        parts = self.load_data()
        choices = part_choices(parts)
        return (
            parts_table(filter_parts(parts, search_term)),
            gr.update(choices=choices, value=None),
            gr.update(choices=[("New part", NEW_PART)] + choices, value=NEW_PART),
        )

    def search(self, search_term: str) -> pd.DataFrame:
        return parts_table(filter_parts(self.parts, search_term))

    def show_part(self, part_id: Optional[str]):
        if not part_id:
            return [], ""
        try:
            part = self.service.get_part(part_id)
        except PartNotFound as e:
            return [], str(e)
        info = (f"**{part.part_name}** #{part.part_number}  \n"
                f"{part.color.value} | WS: {part.workstation} | "
                f"{', '.join(m.value for m in part.models) or 'no models'}  \n"
                f"{len(part.image_urls)} angles")
        return self.gallery_images(part), info

    def gallery_images(self, part: PartRecord) -> List[Any]:
        """Stored photos as PIL images so the gallery works without the API serving /media"""
        images = []
        for url in part.image_urls:
            try:
                data = decode_data_url(url)[1] if is_data_url(url) else self.service.image_store.read(url)
                images.append(Image.open(io.BytesIO(data)) if data else url)
            except (ValueError, OSError) as e:
                logger.warning(f"Cannot preview photo of part {part.id}: {e}")
        return images

    def add_photo(self, part_id: Optional[str], image):
        if not part_id or image is None:
            gr.Warning("Select a part and capture a photo first")
            return self.show_part(part_id)
        try:
            self.service.add_photo(part_id, to_data_url(pil_to_jpeg(image)))
            gr.Info("Photo saved")
        except (PartNotFound, StorageError) as e:
            gr.Warning(f"Error saving photo: {e}")
        self.load_data()
        return self.show_part(part_id)

    def delete_part(self, part_id: Optional[str], search_term: str = ""):
        if part_id:
            try:
                self.service.delete_part(part_id)
            except StorageError as e:
                gr.Warning(f"Error deleting: {e}")
        return self.refresh(search_term)

    # Registration

    def capture_angle(self, image, angles: List[str]):
        if image is None:
            return angles, angle_previews(angles), None
        angles = angles + [to_data_url(pil_to_jpeg(image))]
        return angles, angle_previews(angles), None

    def load_form(self, part_id: Optional[str]):
        if not part_id or part_id == NEW_PART:
            return "", "", PartColor.HAMILTON_WHITE.value, "", [], [], []
        try:
            part = self.service.get_part(part_id)
        except PartNotFound:
            return "", "", PartColor.HAMILTON_WHITE.value, "", [], [], []
        return (part.part_number, part.part_name, part.color.value, part.workstation,
                [m.value for m in part.models], [], [])

    def save_form(self, part_id, part_number, part_name, color, workstation, models, angles):
        if not part_number or not part_name or not workstation:
            gr.Warning("Part number, part name and workstation are required")
            return "Missing required fields", angles, angle_previews(angles)
        form = PartForm(
            part_number=part_number.strip(),
            part_name=part_name.strip(),
            color=PartColor(color),
            workstation=workstation.strip(),
            models=[PartModel(m) for m in models or []],
        )
        try:
            if part_id and part_id != NEW_PART:
                saved = self.service.update_part(part_id, form, angles)
            else:
                saved = self.service.create_part(form, angles)
        except (PartNotFound, StorageError) as e:
            gr.Warning(f"Error: {e}")
            return f"❌ {e}", angles, angle_previews(angles)
        self.load_data()
        return f"✅ Saved {saved.part_number} ({len(saved.image_urls)} photos)", [], []

    # Recognition

    async def analyze(self, image) -> str:
        if image is None:
            return "Capture or upload a photo of the part first."
        parts = self.load_data()
        matcher = SimilarityMatcher(client=self.ai_client, image_store=self.service.image_store)
        try:
            result = await matcher.analyze(pil_to_jpeg(image), parts)
        except CredentialError as e:
            logger.warning(f"AI credential problem: {e}")
            return "⚠️ **AI key missing or invalid.** Set `GEMINI_API_KEY` and restart."
        except AIServiceError as e:
            return f"❌ Analysis error: {e}"
        matches = resolve_matches(result, parts)
        return matches_markdown(result.detected_features, matches)

    # Assistant

    async def chat(self, message: str, history: List[Dict[str, Any]]):
        if not message or not message.strip():
            return "", history
        turns = [{"role": "model" if m["role"] == "assistant" else "user", "text": m["content"]} for m in history]
        assistant = CatalogAssistant(self.load_data(), client=self.ai_client, history=turns)
        try:
            reply = await assistant.send(message)
        except CredentialError:
            reply = "⚠️ AI key missing or invalid. Set `GEMINI_API_KEY` and restart."
        except AIServiceError as e:
            logger.error(f"Assistant error: {e}")
            reply = f"❌ {e}"
        history = history + [
            {"role": "user", "content": message},
            {"role": "assistant", "content": reply},
        ]
        return "", history

    # Import

    def import_file(self, file_path: Optional[str], search_term: str = ""):
        if not file_path:
            return "Choose a spreadsheet first", *self.refresh(search_term)
        try:
            records = import_workbook(file_path, service=self.service)
            status = f"✅ Import complete: {len(records)} parts"
        except Exception as e:
            logger.error(f"Import failed: {e}")
            status = f"❌ Import failed: {e}"
        return status, *self.refresh(search_term)

    def create_interface(self):
        """Create the Gradio interface"""
        settings = get_settings()
        with gr.Blocks(title="AIdentify - Industrial Parts Recognition") as demo:
            gr.HTML("""
            <div style="text-align:center;padding:16px;">
                <h1>A<span style="color:#f59e0b">IDENTIFY</span></h1>
                <p>Industrial Intelligence AI</p>
            </div>
            """)
            if not settings.ai_configured:
                gr.Markdown("⚠️ **AI key not configured** - set `GEMINI_API_KEY` to enable AI Scan and the assistant.")

            with gr.Tabs():
                with gr.Tab("📦 Catalog"):
                    with gr.Row():
                        search_box = gr.Textbox(label="Search", placeholder="Part number or name...", scale=4)
                        refresh_btn = gr.Button("🔄 Refresh", scale=1)
                    catalog_table = gr.Dataframe(headers=CATALOG_HEADERS, interactive=False, wrap=True)
                    with gr.Row():
                        with gr.Column(scale=2):
                            part_select = gr.Dropdown(label="Part", choices=[])
                            part_info = gr.Markdown()
                            part_gallery = gr.Gallery(label="Angles", columns=4, height=260)
                        with gr.Column(scale=1):
                            photo_input = gr.Image(label="New photo", sources=["webcam", "upload"], type="pil")
                            add_photo_btn = gr.Button("📷 Add photo", variant="primary")
                            delete_btn = gr.Button("🗑️ Delete part", variant="stop")

                with gr.Tab("➕ Register Part"):
                    editing = gr.Dropdown(label="Editing", choices=[("New part", NEW_PART)], value=NEW_PART)
                    with gr.Row():
                        with gr.Column():
                            f_number = gr.Textbox(label="Part Number")
                            f_name = gr.Textbox(label="Part Name")
                            f_color = gr.Dropdown(label="Color", choices=[c.value for c in PartColor],
                                                  value=PartColor.HAMILTON_WHITE.value)
                            f_workstation = gr.Textbox(label="Workstation")
                            f_models = gr.CheckboxGroup(label="Models", choices=[m.value for m in PartModel])
                        with gr.Column():
                            angle_input = gr.Image(label="Capture angle", sources=["webcam", "upload"], type="pil")
                            add_angle_btn = gr.Button("📷 Add angle")
                            angles_gallery = gr.Gallery(label="Captured angles", columns=4, height=200)
                    angles_state = gr.State([])
                    with gr.Row():
                        discard_btn = gr.Button("Discard")
                        save_btn = gr.Button("💾 Save", variant="primary")
                    save_status = gr.Markdown()

                with gr.Tab("🤖 AI Scan"):
                    with gr.Row():
                        with gr.Column():
                            scan_input = gr.Image(label="Part to identify", sources=["webcam", "upload"], type="pil")
                            scan_btn = gr.Button("🔍 Analyze", variant="primary")
                        with gr.Column():
                            scan_output = gr.Markdown()

                with gr.Tab("💬 Assistant"):
                    chatbot = gr.Chatbot(type="messages", height=420)
                    with gr.Row():
                        chat_input = gr.Textbox(placeholder="Ask about parts...", scale=5, show_label=False)
                        chat_btn = gr.Button("Send", variant="primary", scale=1)

                with gr.Tab("📥 Import"):
                    import_file = gr.File(label="Spreadsheet (.xlsx / .csv)", file_types=[".xlsx", ".xls", ".csv"], type="filepath")
                    import_btn = gr.Button("📥 Import", variant="primary")
                    import_status = gr.Markdown()

            # Event handlers
            refresh_outputs = [catalog_table, part_select, editing]
            demo.load(fn=self.refresh, inputs=search_box, outputs=refresh_outputs)
            refresh_btn.click(fn=self.refresh, inputs=search_box, outputs=refresh_outputs)
            search_box.change(fn=self.search, inputs=search_box, outputs=catalog_table)
            part_select.change(fn=self.show_part, inputs=part_select, outputs=[part_gallery, part_info])
            add_photo_btn.click(fn=self.add_photo, inputs=[part_select, photo_input], outputs=[part_gallery, part_info])
            delete_btn.click(fn=self.delete_part, inputs=[part_select, search_box], outputs=refresh_outputs)

            editing.change(
                fn=self.load_form,
                inputs=editing,
                outputs=[f_number, f_name, f_color, f_workstation, f_models, angles_state, angles_gallery],
            )
            add_angle_btn.click(
                fn=self.capture_angle,
                inputs=[angle_input, angles_state],
                outputs=[angles_state, angles_gallery, angle_input],
            )
            discard_btn.click(
                fn=lambda: self.load_form(None),
                outputs=[f_number, f_name, f_color, f_workstation, f_models, angles_state, angles_gallery],
            )
            save_btn.click(
                fn=self.save_form,
                inputs=[editing, f_number, f_name, f_color, f_workstation, f_models, angles_state],
                outputs=[save_status, angles_state, angles_gallery],
            ).then(fn=self.refresh, inputs=search_box, outputs=refresh_outputs)

            scan_btn.click(fn=self.analyze, inputs=scan_input, outputs=scan_output)

            chat_btn.click(fn=self.chat, inputs=[chat_input, chatbot], outputs=[chat_input, chatbot])
            chat_input.submit(fn=self.chat, inputs=[chat_input, chatbot], outputs=[chat_input, chatbot])

            import_btn.click(
                fn=self.import_file,
                inputs=[import_file, search_box],
                outputs=[import_status] + refresh_outputs,
            )

        return demo


def main():
    app = AIdentifyGradioApp()
    try:
        app.service.initialize()
    except StorageError as e:
        logger.error(f"Catalog storage unavailable: {e}")
    demo = app.create_interface()

    logger.info("Starting AIdentify Gradio App at http://localhost:7860")
    demo.launch(
        server_name="0.0.0.0",
        server_port=7860,
        share=False,
        show_error=True,
    )


if __name__ == "__main__":
    main()
